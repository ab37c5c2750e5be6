"""
Deterministic names for cached songs and album art.

Cache keys are derived from the stable identity of the remote file
(root, lower-cased path, revision), never from local row ids, so the same
remote revision always maps to the same cache file even after the entry
row is deleted and recreated.
"""

import hashlib
from pathlib import PurePosixPath

from kite_sync.library.models import Entry


def _identity_digest(entry: Entry) -> str:
    identity = f"{entry.root}:{entry.normalized_path}:{entry.rev or ''}"
    return hashlib.sha1(identity.encode("utf-8")).hexdigest()


def make_cache_file_name(entry: Entry) -> str:
    """
    Build the cache key of an entry's file content.

    The original extension is kept so that tag readers that sniff by
    extension keep working on the cached copy.

    Example:
        Entry("/Music/", "Song.MP3", rev="a1") -> "6f1e...c2.mp3"
    """
    suffix = PurePosixPath(entry.filename).suffix.lower()
    return _identity_digest(entry) + suffix


def make_album_art_signature(entry: Entry) -> str:
    """Build the key under which the entry's album art is cached."""
    return "art-" + _identity_digest(entry)
