"""Song file cache and cache key derivation."""

from kite_sync.cache.lru_cache import FileLRUCache
from kite_sync.cache.naming import make_album_art_signature, make_cache_file_name

__all__ = [
    "FileLRUCache",
    "make_album_art_signature",
    "make_cache_file_name",
]
