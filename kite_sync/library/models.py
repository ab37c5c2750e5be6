"""
Data models for the local music library.

This module defines the records mirrored from the remote storage service
and the metadata attached to playable files:

    Entry:              One file or directory under the remote root
    Song:               Media metadata and cache/URL state of a file Entry
    CacheFlags:         What a caller needs from a Song (bytes, tags, artwork)
    AsyncCacheRequest:  Unit of work for the metadata sync queue

Design Decisions:
    - Entry and Song are mutable: the metadata fill stage attaches a Song to
      an Entry, and the sync worker updates Song fields in place before a
      single write back to the database.
    - Models are independent of the database storage format; conversion
      happens in to_database_dict() / from_database_dict().
    - Paths are stored with their original case; lookups use the lower-cased
      form (see normalize_path()).

Usage:
    from kite_sync.library.models import Entry, Song, CacheFlags

    entry = Entry(parent_dir="/Music/", filename="song.mp3", rev="a1")
    entry.full_path  # "/Music/song.mp3"
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class CacheFlags(enum.IntFlag):
    """
    Bitmask describing what a caller needs for a song.

    Bits may combine, e.g. CacheFlags.METADATA_TEXT | CacheFlags.SONG_PLAYABLE.
    """
    NONE = 0
    SONG_PLAYABLE = 1
    METADATA_TEXT = 2
    METADATA_IMAGE = 4

    @property
    def wants_metadata(self) -> bool:
        return bool(self & (CacheFlags.METADATA_TEXT | CacheFlags.METADATA_IMAGE))


def normalize_path(path: str) -> str:
    """
    Normalize a remote path for lookups.

    The remote namespace is case-insensitive, so "/Music/A.mp3" and
    "/music/a.mp3" name the same entry. Trailing slashes are dropped
    except for the root itself.

    Examples:
        "/Music/Song.MP3" -> "/music/song.mp3"
        "/Music/" -> "/music"
        "" -> "/"
    """
    path = path.strip().lower()
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def split_path(path: str) -> tuple[str, str]:
    """
    Split a remote path into (parent_dir, filename).

    The parent directory always ends with "/" so that
    parent_dir + filename reconstructs the full path.

    Examples:
        "/Music/song.mp3" -> ("/Music/", "song.mp3")
        "/Music" -> ("/", "Music")
    """
    path = path.rstrip("/") or "/"
    if path == "/":
        return "/", ""
    parent, _, name = path.rpartition("/")
    return parent + "/", name


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Song:
    """
    Media metadata and cache/URL state associated with a playable Entry.

    Attributes:
        entry_id: Identifier of the owning Entry (1:1).
        id: Database row id, None until first saved.
        album, artist, genre, title: Text tags, None when unknown.
        duration: Duration in milliseconds.
        track_number: Position of the track on its album.
        total_tracks: Number of tracks on the album.
        has_latest_metadata: True once every text tag has been attempted.
                             Never reset by the sync worker; a failed or
                             partial extraction is not retried.
        has_valid_album_art: False once the file is known to carry no
                             usable artwork.
        download_url: Temporary streaming URL for the file.
        download_url_expiration: When download_url stops working.
    """
    entry_id: int | None
    id: int | None = None
    album: str | None = None
    artist: str | None = None
    genre: str | None = None
    title: str | None = None
    duration: int | None = None
    track_number: int | None = None
    total_tracks: int | None = None
    has_latest_metadata: bool = False
    has_valid_album_art: bool = True
    download_url: str | None = None
    download_url_expiration: datetime | None = None

    def has_valid_download_url(self, now: datetime | None = None) -> bool:
        """Return True if a download URL exists and has not expired yet."""
        if self.download_url is None or self.download_url_expiration is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.download_url_expiration > now

    def to_database_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "album": self.album,
            "artist": self.artist,
            "genre": self.genre,
            "title": self.title,
            "duration": self.duration,
            "track_number": self.track_number,
            "total_tracks": self.total_tracks,
            "has_latest_metadata": 1 if self.has_latest_metadata else 0,
            "has_valid_album_art": 1 if self.has_valid_album_art else 0,
            "download_url": self.download_url,
            "download_url_expiration": _to_iso(self.download_url_expiration),
        }

    @classmethod
    def from_database_dict(cls, data: dict[str, Any]) -> "Song":
        return cls(
            entry_id=data["entry_id"],
            id=data.get("id"),
            album=data.get("album"),
            artist=data.get("artist"),
            genre=data.get("genre"),
            title=data.get("title"),
            duration=data.get("duration"),
            track_number=data.get("track_number"),
            total_tracks=data.get("total_tracks"),
            has_latest_metadata=bool(data.get("has_latest_metadata", 0)),
            has_valid_album_art=bool(data.get("has_valid_album_art", 1)),
            download_url=data.get("download_url"),
            download_url_expiration=_from_iso(data.get("download_url_expiration")),
        )


@dataclass
class Entry:
    """
    A file-or-directory record mirroring one remote path.

    Attributes:
        id: Assigned by the database on insert, None before.
        is_dir: True for directories. Directories never get a Song.
        root: Root label of the remote namespace (e.g. "dropbox").
        parent_dir: Parent directory path, always ending with "/".
        filename: Last path component, original case.
        rev: Remote revision tag; changes whenever content changes.
        hash: Remote content hash (directories) or content hash (files).
        modified: Server-side modification time.
        client_mtime: Modification time reported by the uploading client.
        mime_type: Guessed MIME type for files.
        icon: Icon name hint ("folder", "page_white_sound", ...).
        thumb_exists: True if the remote can render a thumbnail.
        song: Runtime-only; attached by the metadata fill stage.
    """
    parent_dir: str
    filename: str
    id: int | None = None
    is_dir: bool = False
    root: str = "dropbox"
    rev: str | None = None
    hash: str | None = None
    modified: datetime | None = None
    client_mtime: datetime | None = None
    mime_type: str | None = None
    icon: str | None = None
    thumb_exists: bool = False
    song: Song | None = field(default=None, repr=False, compare=False)

    @property
    def full_path(self) -> str:
        return self.parent_dir + self.filename

    @property
    def normalized_path(self) -> str:
        return normalize_path(self.full_path)

    def to_database_dict(self) -> dict[str, Any]:
        return {
            "is_dir": 1 if self.is_dir else 0,
            "root": self.root,
            "parent_dir": self.parent_dir,
            "filename": self.filename,
            "lc_path": self.normalized_path,
            "lc_parent_dir": normalize_path(self.parent_dir),
            "rev": self.rev,
            "hash": self.hash,
            "modified": _to_iso(self.modified),
            "client_mtime": _to_iso(self.client_mtime),
            "mime_type": self.mime_type,
            "icon": self.icon,
            "thumb_exists": 1 if self.thumb_exists else 0,
        }

    @classmethod
    def from_database_dict(cls, data: dict[str, Any]) -> "Entry":
        return cls(
            id=data["id"],
            is_dir=bool(data["is_dir"]),
            root=data["root"],
            parent_dir=data["parent_dir"],
            filename=data["filename"],
            rev=data.get("rev"),
            hash=data.get("hash"),
            modified=_from_iso(data.get("modified")),
            client_mtime=_from_iso(data.get("client_mtime")),
            mime_type=data.get("mime_type"),
            icon=data.get("icon"),
            thumb_exists=bool(data.get("thumb_exists", 0)),
        )


class AsyncCacheRequest:
    """
    Request for asynchronous metadata enrichment of one entry.

    Two requests are interchangeable when they target the same entry id
    with the same flags; the metadata sync queue relies on this equality
    (and the matching hash) to collapse bursts of identical requests.
    """

    __slots__ = ("entry", "cache_flags")

    def __init__(self, entry: Entry, cache_flags: CacheFlags) -> None:
        self.entry = entry
        self.cache_flags = CacheFlags(cache_flags)

    @property
    def key(self) -> tuple[int | None, int]:
        return (self.entry.id, int(self.cache_flags))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AsyncCacheRequest):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"AsyncCacheRequest({self.entry.full_path!r}, {self.cache_flags!r})"
