from __future__ import annotations

from abc import ABC, abstractmethod


class StorageBackend(ABC):
    """Write-mostly blob storage for debugging artifacts such as screenshots."""

    @abstractmethod
    def save_bytes(self, key: str, data: bytes) -> str:
        """Persist ``data`` under ``key`` and return a human readable location."""

    @abstractmethod
    def get_bytes(self, key: str) -> bytes:
        """Return the stored bytes; raise ``KeyError`` when the key does not exist."""
