"""
Data models for remote storage responses.

These immutable dataclasses decouple the sync engine from the HTTP API
payloads: the client converts raw JSON into them, and tests build them
directly.

    DeltaPage:       One batch of change records plus continuation state
    DeltaEntry:      One change record (path + metadata, or deletion)
    RemoteMetadata:  Metadata of a live remote file or folder
    TemporaryLink:   Time-limited streaming URL for a file
"""

import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from kite_sync.library.models import split_path


def parse_remote_timestamp(value: str | None) -> datetime | None:
    """
    Parse an API timestamp ("2015-05-12T15:50:38Z") into an aware datetime.

    Returns None for missing or unparsable values.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _icon_for(is_dir: bool, mime_type: str | None) -> str:
    if is_dir:
        return "folder"
    if mime_type and mime_type.startswith("audio/"):
        return "page_white_sound"
    return "page_white"


@dataclass(frozen=True)
class RemoteMetadata:
    """
    Metadata of a live remote file or folder.

    Attributes:
        path: Display path with original case, e.g. "/Music/Song.mp3".
        is_dir: True for folders.
        is_deleted: True when the record describes a deletion tombstone.
        root: Root label of the namespace.
        rev: Revision tag (files only).
        hash: Content hash (files only).
        modified: Server modification time.
        client_mtime: Client modification time.
        mime_type: MIME type guessed from the file name.
        icon: Icon name hint.
        thumb_exists: True if the service can render a thumbnail.
        size: Size in bytes (files only).
    """
    path: str
    is_dir: bool = False
    is_deleted: bool = False
    root: str = "dropbox"
    rev: str | None = None
    hash: str | None = None
    modified: datetime | None = None
    client_mtime: datetime | None = None
    mime_type: str | None = None
    icon: str | None = None
    thumb_exists: bool = False
    size: int = 0

    @property
    def parent_path(self) -> str:
        return split_path(self.path)[0]

    @property
    def file_name(self) -> str:
        return split_path(self.path)[1]

    @classmethod
    def from_api(cls, data: dict[str, Any], root: str) -> "RemoteMetadata":
        """
        Build metadata from one entry of a list_folder response.

        Example input:
            {
                ".tag": "file",
                "path_display": "/Music/Song.mp3",
                "rev": "a1c10ce0dd78",
                "content_hash": "e3b0c442...",
                "server_modified": "2015-05-12T15:50:38Z",
                "client_modified": "2015-05-12T15:50:38Z",
                "size": 7212
            }
        """
        tag = data.get(".tag", "file")
        is_dir = tag == "folder"
        path = data.get("path_display") or data.get("path_lower") or ""
        mime_type = None if is_dir else mimetypes.guess_type(path)[0]

        return cls(
            path=path,
            is_dir=is_dir,
            is_deleted=tag == "deleted",
            root=root,
            rev=data.get("rev"),
            hash=data.get("content_hash"),
            modified=parse_remote_timestamp(data.get("server_modified")),
            client_mtime=parse_remote_timestamp(data.get("client_modified")),
            mime_type=mime_type,
            icon=_icon_for(is_dir, mime_type),
            thumb_exists=bool(mime_type and mime_type.startswith("image/")),
            size=data.get("size", 0),
        )


@dataclass(frozen=True)
class DeltaEntry:
    """
    One change record of the remote change feed.

    Attributes:
        lc_path: Lower-cased path the record applies to.
        metadata: Current metadata, or None when the path was deleted.
    """
    lc_path: str
    metadata: RemoteMetadata | None

    @property
    def is_deletion(self) -> bool:
        return self.metadata is None or self.metadata.is_deleted


@dataclass(frozen=True)
class DeltaPage:
    """
    One batch of change records.

    Attributes:
        entries: Change records, in the order the remote reported them.
        cursor: Position to resume from after this page.
        has_more: True if another page is immediately available.
        reset: True if the local mirror must be cleared before applying
               this page (the remote could not continue incrementally).
    """
    entries: tuple[DeltaEntry, ...]
    cursor: str
    has_more: bool
    reset: bool = False


@dataclass(frozen=True)
class TemporaryLink:
    """
    Time-limited URL for streaming a file.

    Attributes:
        url: The link as returned by the service (not yet validated).
        expires: When the link stops working.
    """
    url: str
    expires: datetime
