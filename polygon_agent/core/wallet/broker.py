"""
Request broker: creates approval requests and, in wait mode, collects the
approver's sealed payload over a tunneled loopback callback.
"""

import asyncio
import logging
import secrets
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

from ...config import settings
from ...services.address import normalize_chain, resolve_chain_id
from ..recovery.errors import CallbackTimeout, InvalidConstraints, TunnelUnavailable
from ..vault.store import VaultStore
from .callback import CallbackListener
from .codec import SealedSessionCodec
from .handshake import EphemeralHandshake, b64url_encode
from .models import ApprovalRequest, PendingRequest, SessionConstraints, WalletSession
from .tunnel import CloudflaredTunnel

logger = logging.getLogger(__name__)

CALLBACK_MODE_TUNNEL = "tunnel"
CALLBACK_MODE_MANUAL = "manual"


@dataclass
class WaitOutcome:
    approval: ApprovalRequest
    callback_mode: str
    session: WalletSession
    blob_path: Optional[Path] = None


async def read_blob_from_stdin() -> str:
    line = await asyncio.to_thread(sys.stdin.readline)
    return line.strip()


def build_approval_url(
    connector_url: str,
    request_id: str,
    wallet_name: str,
    public_key: str,
    chain_name: str,
    constraints: SessionConstraints,
    access_token: Optional[str] = None,
    callback_url: Optional[str] = None,
) -> str:
    parts = urlsplit(connector_url)
    path = parts.path.rstrip("/") + "/link"

    params = [("rid", request_id), ("wallet", wallet_name), ("pub", public_key), ("chain", chain_name)]
    if callback_url:
        params.append(("callbackUrl", callback_url))
    if access_token:
        params.append(("accessKey", access_token))
    params.extend(constraints.query_params())

    return urlunsplit((parts.scheme, parts.netloc, path, urlencode(params), ""))


class RequestBroker:
    """
    Issues approval requests for named wallets.

    Manual mode stops after create_request(); the user relays the payload
    later through `wallet import`. Wait mode additionally serves a callback
    and binds the session as soon as the approver posts it.
    """

    def __init__(
        self,
        store: VaultStore,
        codec: Optional[SealedSessionCodec] = None,
        connector_url: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        listener_factory: Callable[[], CallbackListener] = CallbackListener,
        tunnel_factory: Optional[Callable[[], CloudflaredTunnel]] = None,
        read_blob: Callable[[], Awaitable[str]] = read_blob_from_stdin,
    ):
        self.store = store
        self.codec = codec or SealedSessionCodec(store)
        self.connector_url = connector_url or settings.connector_url
        self.ttl = ttl or timedelta(hours=settings.request_ttl_hours)
        self.listener_factory = listener_factory
        self.tunnel_factory = tunnel_factory or self._default_tunnel
        self.read_blob = read_blob

    def _default_tunnel(self) -> CloudflaredTunnel:
        return CloudflaredTunnel(
            bin_dir=self.store.bin_dir,
            binary=settings.cloudflared_path,
            start_timeout=settings.tunnel_start_timeout_seconds,
        )

    def create_request(
        self,
        wallet_name: str,
        chain: Optional[str] = None,
        constraints: Optional[SessionConstraints] = None,
        access_token: Optional[str] = None,
        callback_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ApprovalRequest:
        """
        Create and persist a pending request.

        Args:
            wallet_name: Local name the session will be stored under
            chain: Chain name or alias (default: settings.default_chain)
            constraints: Spending limits and contract whitelist
            access_token: Project access key forwarded to the approver
            callback_url: Public callback the approver should POST to
            now: Clock override

        Returns:
            ApprovalRequest with the id, link and expiry
        """
        constraints = constraints or SessionConstraints()
        chain_name = normalize_chain(chain or settings.default_chain)
        if resolve_chain_id(chain_name) is None:
            raise InvalidConstraints(f"Unsupported chain: {chain}")
        # Validate before anything is written
        constraints.query_params()

        now = now or datetime.now(timezone.utc)
        access_token = access_token or settings.project_access_key or None
        pending = PendingRequest(
            request_id=b64url_encode(secrets.token_bytes(16)),
            wallet_name=wallet_name,
            chain_name=chain_name,
            created_at=now,
            handshake=EphemeralHandshake.generate(self.ttl, now=now),
            access_token=access_token,
        )
        self.store.save_request(pending)

        url = build_approval_url(
            self.connector_url,
            pending.request_id,
            wallet_name,
            pending.public_key,
            chain_name,
            constraints,
            access_token=access_token,
            callback_url=callback_url,
        )
        logger.info(f"Created approval request {pending.request_id} for wallet '{wallet_name}' on {chain_name}")
        return ApprovalRequest(request_id=pending.request_id, approval_url=url, expires_at=pending.expires_at)

    async def create_and_wait(
        self,
        wallet_name: str,
        chain: Optional[str] = None,
        constraints: Optional[SessionConstraints] = None,
        access_token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        on_link: Optional[Callable[[ApprovalRequest, str], None]] = None,
    ) -> WaitOutcome:
        """
        Create a request and block until its payload is bound.

        The listener and tunnel are always torn down before this returns. If
        no tunnel can be started the user is asked to paste the payload
        instead; the pasted blob is also saved to a temp file.

        Raises:
            CallbackTimeout: nothing arrived on the callback in time
        """
        timeout = timeout_seconds if timeout_seconds is not None else settings.callback_timeout_seconds
        listener = self.listener_factory()
        tunnel: Optional[CloudflaredTunnel] = None
        mode = CALLBACK_MODE_MANUAL
        callback_url = None

        port = await listener.start()
        try:
            try:
                tunnel = self.tunnel_factory()
                public_url = await tunnel.start(port)
                callback_url = f"{public_url}{listener.callback_path}"
                mode = CALLBACK_MODE_TUNNEL
            except TunnelUnavailable as e:
                logger.warning(f"cloudflared unavailable ({e.message}), falling back to manual mode")
                tunnel = None
                await listener.close()

            approval = self.create_request(
                wallet_name,
                chain=chain,
                constraints=constraints,
                access_token=access_token,
                callback_url=callback_url,
            )
            if on_link:
                on_link(approval, mode)

            blob_path = None
            if mode == CALLBACK_MODE_TUNNEL:
                try:
                    ciphertext = await asyncio.wait_for(listener.wait(), timeout=timeout)
                except asyncio.TimeoutError as e:
                    raise CallbackTimeout(timeout) from e
            else:
                ciphertext = await self.read_blob()
                blob_path = self._save_blob(approval.request_id, ciphertext)
        finally:
            if tunnel is not None:
                await tunnel.stop()
            await listener.close()

        session = self.codec.bind(approval.request_id, ciphertext, wallet_name=wallet_name)
        return WaitOutcome(approval=approval, callback_mode=mode, session=session, blob_path=blob_path)

    def _save_blob(self, request_id: str, ciphertext: str) -> Optional[Path]:
        path = Path(tempfile.gettempdir()) / f"polygon-session-{request_id}.txt"
        try:
            path.write_text(ciphertext, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not save pasted blob to {path}: {e}")
            return None
        logger.info(f"Blob saved to {path}; re-import with `wallet import --ciphertext @{path}`")
        return path
