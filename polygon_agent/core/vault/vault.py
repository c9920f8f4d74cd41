"""
Credential vault: AES-256-GCM authenticated encryption of secrets at rest.
"""

import secrets
from dataclasses import asdict, dataclass
from typing import Any, Dict, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..recovery.errors import DecryptionFailure
from .keys import KeyProvider

IV_LENGTH = 12
TAG_LENGTH = 16


@dataclass(frozen=True)
class VaultSecret:
    """An encrypted record. All fields are lowercase hex."""

    iv: str
    ciphertext: str
    tag: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VaultSecret":
        try:
            return cls(iv=str(data["iv"]), ciphertext=str(data["ciphertext"]), tag=str(data["tag"]))
        except (KeyError, TypeError) as e:
            raise DecryptionFailure(f"Malformed vault record: {e}") from e


class CredentialVault:
    """
    Encrypts and decrypts secrets under the provider's key.

    Every call draws a fresh 96-bit IV. Any failure to authenticate, including
    a wrong key or a tampered tag, surfaces as DecryptionFailure.
    """

    def __init__(self, key_provider: KeyProvider):
        self.key_provider = key_provider

    def encrypt(self, plaintext: Union[str, bytes]) -> VaultSecret:
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")

        iv = secrets.token_bytes(IV_LENGTH)
        sealed = AESGCM(self.key_provider.get_key()).encrypt(iv, plaintext, None)
        # cryptography appends the tag; it is stored separately
        return VaultSecret(
            iv=iv.hex(),
            ciphertext=sealed[:-TAG_LENGTH].hex(),
            tag=sealed[-TAG_LENGTH:].hex(),
        )

    def decrypt(self, secret: VaultSecret) -> bytes:
        try:
            iv = bytes.fromhex(secret.iv)
            ciphertext = bytes.fromhex(secret.ciphertext)
            tag = bytes.fromhex(secret.tag)
        except (TypeError, ValueError) as e:
            raise DecryptionFailure(f"Malformed vault record: {e}") from e

        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionFailure("Malformed vault record: bad iv or tag length")

        try:
            return AESGCM(self.key_provider.get_key()).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionFailure("Vault record failed authentication") from e

    def decrypt_text(self, secret: VaultSecret) -> str:
        return self.decrypt(secret).decode("utf-8")
