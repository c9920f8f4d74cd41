"""
Key providers for the credential vault.

The vault never reaches for a global key; a provider is constructed once at
startup and injected.
"""

import logging
import os
import secrets
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..recovery.errors import DecryptionFailure

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
PRIVATE_DIR_MODE = 0o700


def ensure_private_dir(path: Path) -> Path:
    """Create path and any missing parents as owner-only directories.

    `Path.mkdir(parents=True, mode=...)` applies the mode to the leaf only,
    so each missing component is created and chmodded in turn.
    """
    path = Path(path)
    missing = []
    current = path
    while not current.exists():
        missing.append(current)
        current = current.parent
    for directory in reversed(missing):
        directory.mkdir(mode=PRIVATE_DIR_MODE, exist_ok=True)
        os.chmod(directory, PRIVATE_DIR_MODE)
    return path


class KeyProvider(ABC):
    """Supplies the single 256-bit symmetric vault key."""

    @abstractmethod
    def get_key(self) -> bytes:
        pass


class InMemoryKeyProvider(KeyProvider):
    """Holds a key in process memory. Used by tests and one-off tooling."""

    def __init__(self, key: Optional[bytes] = None):
        if key is None:
            key = secrets.token_bytes(KEY_LENGTH)
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Vault key must be {KEY_LENGTH} bytes")
        self._key = key

    def get_key(self) -> bytes:
        return self._key


class FileKeyProvider(KeyProvider):
    """
    Key stored as raw bytes in a file with owner-only permissions.

    The file is created on first use. A file of the wrong length is treated
    as corruption, not silently regenerated, since that would orphan every
    existing record.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._key: Optional[bytes] = None

    def get_key(self) -> bytes:
        if self._key is not None:
            return self._key

        if self.path.exists():
            key = self.path.read_bytes()
            if len(key) != KEY_LENGTH:
                raise DecryptionFailure(
                    f"Encryption key at {self.path} has invalid length {len(key)}"
                )
        else:
            key = self._generate()

        self._key = key
        return key

    def _generate(self) -> bytes:
        ensure_private_dir(self.path.parent)
        key = secrets.token_bytes(KEY_LENGTH)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(key)
        logger.info(f"Generated new vault key at {self.path}")
        return key
