"""
Ephemeral key-pair handshake.

An EphemeralHandshake owns one X25519 key pair and its expiry. The approver
seals the session payload to the public half; only this object can open it,
and only before the expiry. The private half leaves the object solely as part
of the record the vault encrypts.
"""

import base64
import binascii
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, SealedBox

from ..recovery.errors import DecryptionFailure, ExpiredRequest


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    value = value.strip()
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EphemeralHandshake:
    """Decryption capability bound to a single approval request."""

    def __init__(self, private_key: PrivateKey, expires_at: datetime):
        self._private_key = private_key
        self._expires_at = expires_at

    @classmethod
    def generate(cls, ttl: timedelta, now: Optional[datetime] = None) -> "EphemeralHandshake":
        return cls(PrivateKey.generate(), (now or _utcnow()) + ttl)

    @property
    def public_key(self) -> str:
        """Public half, base64url without padding, as placed in the approval link."""
        return b64url_encode(bytes(self._private_key.public_key))

    @property
    def expires_at(self) -> datetime:
        return self._expires_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self._expires_at

    def open(self, ciphertext: str, now: Optional[datetime] = None) -> bytes:
        """
        Open a sealed-box ciphertext addressed to this handshake.

        Args:
            ciphertext: base64url sealed box produced by the approver
            now: Clock override

        Returns:
            The plaintext bytes

        Raises:
            ExpiredRequest: the handshake is past its expiry (checked first)
            DecryptionFailure: the ciphertext is malformed or not sealed to us
        """
        if self.is_expired(now):
            raise ExpiredRequest(f"Request expired at {self._expires_at.isoformat()}")

        try:
            raw = b64url_decode(ciphertext)
        except (binascii.Error, ValueError) as e:
            raise DecryptionFailure(f"Ciphertext is not valid base64url: {e}") from e

        try:
            return SealedBox(self._private_key).decrypt(raw)
        except CryptoError as e:
            raise DecryptionFailure("Failed to decrypt ciphertext") from e

    def to_record(self) -> Dict[str, Any]:
        return {
            "publicKey": self.public_key,
            "privateKey": b64url_encode(bytes(self._private_key)),
            "expiresAt": self._expires_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "EphemeralHandshake":
        private_key = PrivateKey(b64url_decode(record["privateKey"]))
        return cls(private_key, datetime.fromisoformat(record["expiresAt"]))

    def __repr__(self) -> str:
        return f"EphemeralHandshake(public_key={self.public_key!r}, expires_at={self._expires_at.isoformat()!r})"
