"""
Secondary signing identity.

A plain secp256k1 account that can produce raw EIP-712 signatures and sign
its own transactions, which the custodial smart wallet cannot do.
"""

import logging
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount

from ..vault.store import VaultStore

logger = logging.getLogger(__name__)


def _hex(value: Any) -> str:
    text = value.hex() if isinstance(value, (bytes, bytearray)) or hasattr(value, "hex") else str(value)
    return text if text.startswith("0x") else f"0x{text}"


class SigningIdentity:
    """Wraps a local account. The private key never leaves except to the vault."""

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def generate(cls) -> "SigningIdentity":
        return cls(Account.create())

    @classmethod
    def from_private_key(cls, private_key: str) -> "SigningIdentity":
        key = private_key if private_key.startswith("0x") else f"0x{private_key}"
        return cls(Account.from_key(key))

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(
        self,
        domain: Dict[str, Any],
        types: Dict[str, Any],
        message: Dict[str, Any],
    ) -> str:
        """Sign EIP-712 typed data and return the 0x-prefixed 65-byte signature."""
        signable = encode_typed_data(domain_data=domain, message_types=types, message_data=message)
        signed = self._account.sign_message(signable)
        return _hex(signed.signature)

    def sign_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign a transaction dict and return the raw 0x-prefixed payload."""
        signed = self._account.sign_transaction(tx)
        return _hex(signed.raw_transaction)

    def save(self, store: VaultStore) -> None:
        store.save_identity(_hex(self._account.key))
        logger.info(f"Stored signing identity {self.address}")

    @classmethod
    def load(cls, store: VaultStore) -> Optional["SigningIdentity"]:
        key = store.load_identity()
        if key is None:
            return None
        return cls.from_private_key(key)

    def __repr__(self) -> str:
        return f"SigningIdentity(address={self.address!r})"
