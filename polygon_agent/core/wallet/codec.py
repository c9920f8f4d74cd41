"""
Sealed session codec.

Turns the approver's sealed payload into a stored WalletSession.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ...services.address import is_valid_evm_address, resolve_chain_id
from ..recovery.errors import ChainMismatch, InvalidPayload, RequestNotFound
from ..vault.store import VaultStore
from .models import PendingRequest, WalletSession

logger = logging.getLogger(__name__)

_IMPLICIT_REQUIRED = ("pk", "attestation", "identitySignature")
_IMPLICIT_META = ("guard", "loginMethod", "userEmail")


class SealedSessionCodec:
    """
    Decrypts and validates approval payloads, then persists the session.

    Failure order is fixed: an expired request is reported before anything
    about the ciphertext, then decryption, then payload shape, then chain.
    """

    def __init__(self, store: VaultStore):
        self.store = store

    def bind(
        self,
        request_id: str,
        ciphertext: str,
        wallet_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WalletSession:
        """
        Bind an approval ciphertext to its pending request.

        Args:
            request_id: Pending request id (rid)
            ciphertext: base64url sealed box from the approver
            wallet_name: Optional guard that the request belongs to this wallet
            now: Clock override

        Returns:
            The stored WalletSession (any previous session for the name is replaced)
        """
        pending = self.store.load_request(request_id)
        if wallet_name and pending.wallet_name != wallet_name:
            raise RequestNotFound(
                request_id,
                message=f"Request {request_id} belongs to wallet '{pending.wallet_name}', not '{wallet_name}'",
            )

        plaintext = pending.handshake.open(ciphertext, now=now)
        payload = self._parse(plaintext)
        session = self._to_session(pending, payload, now or datetime.now(timezone.utc))

        self.store.save_session(session)
        # A key pair decrypts exactly one approval
        self.store.delete_request(request_id)
        logger.info(f"Bound request {request_id} to wallet '{session.wallet_name}' ({session.wallet_address})")
        return session

    def bind_latest(self, wallet_name: str, ciphertext: str, now: Optional[datetime] = None) -> WalletSession:
        """Bind against the most recent pending request for a wallet name."""
        pending = self.store.find_request_for_wallet(wallet_name)
        return self.bind(pending.request_id, ciphertext, wallet_name=wallet_name, now=now)

    def _parse(self, plaintext: bytes) -> Dict[str, Any]:
        try:
            payload = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidPayload(f"Decrypted payload is not JSON: {e}") from e

        if not isinstance(payload, dict):
            raise InvalidPayload("Decrypted payload is not an object")

        wallet_address = payload.get("walletAddress")
        if not isinstance(wallet_address, str) or not is_valid_evm_address(wallet_address):
            raise InvalidPayload("Missing or invalid walletAddress in payload", field_name="walletAddress")

        chain_id = payload.get("chainId")
        if isinstance(chain_id, bool) or not isinstance(chain_id, int):
            raise InvalidPayload("Missing or invalid chainId in payload", field_name="chainId")

        explicit = payload.get("explicitSession")
        if not isinstance(explicit, dict):
            raise InvalidPayload("Missing explicitSession in payload", field_name="explicitSession")
        if not isinstance(explicit.get("pk"), str) or not explicit["pk"]:
            raise InvalidPayload("Missing explicitSession.pk in payload", field_name="explicitSession.pk")

        implicit = payload.get("implicit")
        if not isinstance(implicit, dict) or not all(implicit.get(k) for k in _IMPLICIT_REQUIRED):
            raise InvalidPayload("Missing implicit session in payload", field_name="implicit")

        return payload

    def _to_session(self, pending: PendingRequest, payload: Dict[str, Any], now: datetime) -> WalletSession:
        expected = resolve_chain_id(pending.chain_name)
        actual = payload["chainId"]
        if expected != actual:
            raise ChainMismatch(expected=expected, actual=actual)

        implicit = payload["implicit"]
        implicit_session = {k: implicit[k] for k in _IMPLICIT_REQUIRED}
        implicit_session["meta"] = {k: implicit.get(k) for k in _IMPLICIT_META}

        return WalletSession(
            wallet_name=pending.wallet_name,
            wallet_address=payload["walletAddress"],
            chain_id=actual,
            chain_name=pending.chain_name,
            explicit_session=payload["explicitSession"],
            implicit_session=implicit_session,
            access_token=pending.access_token,
            created_at=now,
        )
