"""
On-disk layout for encrypted agent state.

    <root>/
        .encryption-key        raw 32-byte vault key (0600)
        wallets/<name>.json    WalletSession records
        requests/<rid>.json    PendingRequest records
        identity.json          signing identity private key
        bin/                   cached tunnel binary

Every record file holds a JSON VaultSecret; nothing secret is written in the
clear. Writes go to a temp file in the same directory followed by an atomic
rename, so concurrent writers to the same wallet never leave a torn file and
the last writer wins.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..recovery.errors import DecryptionFailure, MissingSession, RequestNotFound
from ..wallet.models import PendingRequest, WalletSession
from .keys import PRIVATE_DIR_MODE, FileKeyProvider, KeyProvider, ensure_private_dir
from .vault import CredentialVault, VaultSecret

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")


def _check_name(kind: str, value: str) -> str:
    if not value or not _NAME_RE.match(value):
        raise ValueError(f"Invalid {kind}: {value!r}")
    return value


class VaultStore:
    """Encrypted persistence for sessions, pending requests and the signing identity."""

    KEY_FILE = ".encryption-key"
    IDENTITY_FILE = "identity.json"

    def __init__(self, root: Path, vault: Optional[CredentialVault] = None):
        self.root = Path(root).expanduser()
        self.vault = vault or CredentialVault(FileKeyProvider(self.root / self.KEY_FILE))

    @classmethod
    def open(cls, root: Path, key_provider: Optional[KeyProvider] = None) -> "VaultStore":
        provider = key_provider or FileKeyProvider(Path(root).expanduser() / cls.KEY_FILE)
        return cls(root, CredentialVault(provider))

    # =========================================================================
    # Paths
    # =========================================================================

    @property
    def wallets_dir(self) -> Path:
        return self.root / "wallets"

    @property
    def requests_dir(self) -> Path:
        return self.root / "requests"

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    def _ensure_dir(self, path: Path) -> Path:
        # The root holds the key file and identity, so it is tightened even if it already existed
        ensure_private_dir(self.root)
        os.chmod(self.root, PRIVATE_DIR_MODE)
        return ensure_private_dir(path)

    # =========================================================================
    # Record I/O
    # =========================================================================

    def _write_record(self, path: Path, payload: Dict[str, Any]) -> None:
        self._ensure_dir(path.parent)
        secret = self.vault.encrypt(json.dumps(payload, separators=(",", ":")))

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(secret.to_dict(), fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _read_record(self, path: Path) -> Dict[str, Any]:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise DecryptionFailure(f"Corrupt vault record {path.name}: {e}") from e

        if not isinstance(raw, dict):
            raise DecryptionFailure(f"Corrupt vault record {path.name}")

        plaintext = self.vault.decrypt(VaultSecret.from_dict(raw))
        try:
            return json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise DecryptionFailure(f"Vault record {path.name} is not JSON: {e}") from e

    # =========================================================================
    # Wallet sessions
    # =========================================================================

    def _session_path(self, wallet_name: str) -> Path:
        return self.wallets_dir / f"{_check_name('wallet name', wallet_name)}.json"

    def save_session(self, session: WalletSession) -> Path:
        path = self._session_path(session.wallet_name)
        self._write_record(path, session.to_record())
        logger.info(f"Saved session for wallet '{session.wallet_name}'")
        return path

    def load_session(self, wallet_name: str) -> WalletSession:
        path = self._session_path(wallet_name)
        if not path.exists():
            raise MissingSession(wallet_name)
        return WalletSession.from_record(self._read_record(path))

    def list_sessions(self) -> List[str]:
        if not self.wallets_dir.exists():
            return []
        return sorted(p.stem for p in self.wallets_dir.glob("*.json"))

    def delete_session(self, wallet_name: str) -> bool:
        path = self._session_path(wallet_name)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Removed session for wallet '{wallet_name}'")
        return True

    # =========================================================================
    # Pending requests
    # =========================================================================

    def _request_path(self, request_id: str) -> Path:
        return self.requests_dir / f"{_check_name('request id', request_id)}.json"

    def save_request(self, request: PendingRequest) -> Path:
        path = self._request_path(request.request_id)
        self._write_record(path, request.to_record())
        return path

    def load_request(self, request_id: str) -> PendingRequest:
        path = self._request_path(request_id)
        if not path.exists():
            raise RequestNotFound(request_id)
        return PendingRequest.from_record(self._read_record(path))

    def delete_request(self, request_id: str) -> bool:
        path = self._request_path(request_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_requests(self) -> List[PendingRequest]:
        if not self.requests_dir.exists():
            return []

        requests = []
        for path in self.requests_dir.glob("*.json"):
            try:
                requests.append(PendingRequest.from_record(self._read_record(path)))
            except DecryptionFailure as e:
                logger.warning(f"Skipping unreadable request {path.name}: {e}")
        return sorted(requests, key=lambda r: r.created_at)

    def find_request_for_wallet(self, wallet_name: str) -> PendingRequest:
        """Most recent pending request for a wallet name."""
        matches = [r for r in self.list_requests() if r.wallet_name == wallet_name]
        if not matches:
            raise RequestNotFound(message=f"No pending request for wallet '{wallet_name}'")
        return matches[-1]

    # =========================================================================
    # Signing identity
    # =========================================================================

    def save_identity(self, private_key_hex: str) -> Path:
        path = self.root / self.IDENTITY_FILE
        self._write_record(path, {"privateKey": private_key_hex})
        return path

    def load_identity(self) -> Optional[str]:
        path = self.root / self.IDENTITY_FILE
        if not path.exists():
            return None
        return self._read_record(path)["privateKey"]
