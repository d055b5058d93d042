from .query_cache import CacheEntry, QueryCache
from .request_layer import RequestLayer

__all__ = ['CacheEntry', 'QueryCache', 'RequestLayer']
