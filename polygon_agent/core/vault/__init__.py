"""
Encrypted credential storage.
"""

from .keys import FileKeyProvider, InMemoryKeyProvider, KeyProvider
from .store import VaultStore
from .vault import CredentialVault, VaultSecret

__all__ = [
    "CredentialVault",
    "FileKeyProvider",
    "InMemoryKeyProvider",
    "KeyProvider",
    "VaultSecret",
    "VaultStore",
]
