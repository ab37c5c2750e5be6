"""
Library data model: entries mirroring the remote tree, songs attached to
playable entries, cache flags and enrichment requests.
"""

from kite_sync.library.models import (
    AsyncCacheRequest,
    CacheFlags,
    Entry,
    Song,
    normalize_path,
    split_path,
)

__all__ = [
    "AsyncCacheRequest",
    "CacheFlags",
    "Entry",
    "Song",
    "normalize_path",
    "split_path",
]
