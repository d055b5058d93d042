from .marker_store import InMemoryKeyValueStore, JsonFileKeyValueStore, SessionMarkers

__all__ = ['InMemoryKeyValueStore', 'JsonFileKeyValueStore', 'SessionMarkers']
