"""
Marker Stores - Local persistence for session fallback markers
==============================================================
Two KeyValueStore implementations plus ``SessionMarkers``, which owns the
"last known identity" blob and the "session active" flag.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from ...core.logger import StructuredLogger, get_logger
from ...domain.interfaces.storage import KeyValueStore
from ...domain.models.session import Identity


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store; contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def clear(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """
    Store backed by one JSON document on disk.

    Every write rewrites the whole document through a temporary file and
    ``os.replace`` so a crash never leaves a half-written file behind. An
    unreadable document is treated as empty.
    """

    def __init__(self, path: str, logger: Optional[StructuredLogger] = None):
        self.path = Path(path)
        self.logger = logger or get_logger(__name__)
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning("marker_store.load_failed", {
                "path": str(self.path),
                "error": str(e)
            })
            return {}
        if not isinstance(data, dict):
            self.logger.warning("marker_store.unexpected_document", {
                "path": str(self.path),
                "type": type(data).__name__
            })
            return {}
        return data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".markers-", suffix=".json")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self._data, f)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def clear(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()


class SessionMarkers:
    """
    Reads and writes the two session fallback markers.

    - identity marker: serialized Identity of the last validated session
    - session marker: boolean "session active" flag
    """

    def __init__(self,
                 store: KeyValueStore,
                 identity_key: str = "lastKnownUser",
                 session_key: str = "sessionActive",
                 logger: Optional[StructuredLogger] = None):
        self.store = store
        self.identity_key = identity_key
        self.session_key = session_key
        self.logger = logger or get_logger(__name__)

    def load_identity(self) -> Optional[Identity]:
        """Return the last known identity, or None if absent or unreadable."""
        blob = self.store.get(self.identity_key)
        if blob is None:
            return None
        if isinstance(blob, str):
            try:
                blob = json.loads(blob)
            except json.JSONDecodeError:
                self.logger.warning("session_markers.identity_undecodable", {"key": self.identity_key})
                return None
        try:
            return Identity.from_payload(blob)
        except ValueError as e:
            self.logger.warning("session_markers.identity_invalid", {
                "key": self.identity_key,
                "error": str(e)
            })
            return None

    def has_active_session(self) -> bool:
        """True when either marker indicates a session."""
        flag = self.store.get(self.session_key)
        if flag is True or flag == "true":
            return True
        return self.store.get(self.identity_key) is not None

    def persist(self, identity: Identity) -> None:
        self.store.set(self.identity_key, identity.to_dict())
        self.store.set(self.session_key, True)

    def clear(self) -> None:
        self.store.clear(self.identity_key)
        self.store.clear(self.session_key)
