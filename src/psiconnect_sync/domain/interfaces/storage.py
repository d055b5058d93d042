"""
Storage Interfaces - Ports for local key-value persistence
==========================================================
The Session Store keeps its fallback markers in an injected key-value store
instead of ambient client storage, so tests can swap in a fake.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class KeyValueStore(ABC):
    """Minimal persistent key-value capability."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None when the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under ``key``."""
        pass

    @abstractmethod
    def clear(self, key: str) -> None:
        """Remove ``key``; removing an absent key is a no-op."""
        pass
