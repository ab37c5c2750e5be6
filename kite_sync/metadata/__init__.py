"""
Metadata module for kite-sync.

    - retriever: Tag and embedded picture extraction (mutagen)
    - artwork: Album art thumbnail cache (Pillow)
"""

from kite_sync.metadata.artwork import (
    LARGE_ALBUM_ART_DIMENSIONS,
    SMALL_ALBUM_ART_DIMENSIONS,
    AlbumArtCache,
)
from kite_sync.metadata.retriever import MetadataKey, MetadataRetriever

__all__ = [
    "AlbumArtCache",
    "LARGE_ALBUM_ART_DIMENSIONS",
    "SMALL_ALBUM_ART_DIMENSIONS",
    "MetadataKey",
    "MetadataRetriever",
]
