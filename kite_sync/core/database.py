"""
Thread-safe SQLite database for kite-sync.

This module stores the local mirror of the remote file tree together with
the media metadata extracted for playable files.

Schema:
    entries:        One row per remote path (files and directories),
                    unique on the lower-cased path
    songs:          One row per file entry with tags, artwork state and
                    the temporary download URL (cascades with its entry)
    preferences:    Small key/value store; holds the delta cursor

Path Matching:
    The remote namespace is case-insensitive. Every entry stores its
    lower-cased path (lc_path) and parent (lc_parent_dir); lookups,
    upserts and subtree deletions go through those columns.

Usage:
    db = Database(storage_dir / "kite_sync.db")

    entry_id = db.upsert_entry(entry)
    song = db.find_song_by_entry_id(entry_id)
    db.delete_entry_tree("/Music/Old Album")
    db.set_delta_cursor(cursor)
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

from kite_sync.core.exceptions import DatabaseError
from kite_sync.library.models import Entry, Song, normalize_path


DATABASE_VERSION = 1
DELTA_CURSOR_KEY = "delta_cursor"


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    is_dir INTEGER NOT NULL DEFAULT 0,
    root TEXT,
    parent_dir TEXT NOT NULL,
    filename TEXT NOT NULL,
    lc_path TEXT UNIQUE NOT NULL,
    lc_parent_dir TEXT NOT NULL,

    -- Remote state
    rev TEXT,
    hash TEXT,
    modified TEXT,
    client_mtime TEXT,
    mime_type TEXT,
    icon TEXT,
    thumb_exists INTEGER DEFAULT 0,

    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS songs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id INTEGER UNIQUE NOT NULL,

    -- Text metadata
    album TEXT,
    artist TEXT,
    genre TEXT,
    title TEXT,
    duration INTEGER,
    track_number INTEGER,
    total_tracks INTEGER,
    has_latest_metadata INTEGER DEFAULT 0,

    -- Artwork
    has_valid_album_art INTEGER DEFAULT 1,

    -- Streaming
    download_url TEXT,
    download_url_expiration TEXT,

    updated_at TEXT,
    FOREIGN KEY (entry_id) REFERENCES entries(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS preferences (
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE INDEX IF NOT EXISTS idx_entries_lc_parent_dir ON entries(lc_parent_dir);
CREATE INDEX IF NOT EXISTS idx_songs_entry_id ON songs(entry_id);
"""


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Database:
    """
    Thread-safe SQLite database holding entries, songs and preferences.

    Uses a single persistent connection with thread locking for safety.
    All public methods acquire self._lock before executing, so the delta
    sync (caller's thread) and the metadata sync worker (background thread)
    can share one instance.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        if not db_path.parent.exists():
            raise DatabaseError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to initialize database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the persistent database connection as a context manager.

        The connection is created once and reused for all operations.
        sqlite3 errors are wrapped into DatabaseError.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # We handle thread safety with _lock
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        try:
            yield self._conn
        except sqlite3.Error as e:
            self._conn.rollback()
            raise DatabaseError(
                f"Database operation failed: {e}",
                details={"path": str(self.db_path), "original_error": str(e)}
            ) from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise DatabaseError(
                    f"Database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    # =========================================================================
    # Entry Store
    # =========================================================================

    def upsert_entry(self, entry: Entry) -> int:
        """
        Insert an entry or fully overwrite the row with the same path.

        The row id is preserved across updates. When the remote revision
        changes, the song row of the entry is dropped: its tags, artwork
        state and download URL describe content that no longer exists.

        Returns:
            The database id of the entry (also stored on entry.id).
        """
        row = entry.to_database_dict()
        now = self._now_iso()

        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT id, rev FROM entries WHERE lc_path = ?", (row["lc_path"],)
                )
                existing = cursor.fetchone()

                if existing is None:
                    cursor = conn.execute("""
                        INSERT INTO entries (
                            is_dir, root, parent_dir, filename, lc_path, lc_parent_dir,
                            rev, hash, modified, client_mtime, mime_type, icon,
                            thumb_exists, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        row["is_dir"], row["root"], row["parent_dir"], row["filename"],
                        row["lc_path"], row["lc_parent_dir"], row["rev"], row["hash"],
                        row["modified"], row["client_mtime"], row["mime_type"],
                        row["icon"], row["thumb_exists"], now, now
                    ))
                    entry_id = cursor.lastrowid
                else:
                    entry_id = existing["id"]
                    conn.execute("""
                        UPDATE entries SET
                            is_dir = ?, root = ?, parent_dir = ?, filename = ?,
                            lc_parent_dir = ?, rev = ?, hash = ?, modified = ?,
                            client_mtime = ?, mime_type = ?, icon = ?,
                            thumb_exists = ?, updated_at = ?
                        WHERE id = ?
                    """, (
                        row["is_dir"], row["root"], row["parent_dir"], row["filename"],
                        row["lc_parent_dir"], row["rev"], row["hash"], row["modified"],
                        row["client_mtime"], row["mime_type"], row["icon"],
                        row["thumb_exists"], now, entry_id
                    ))
                    if existing["rev"] != row["rev"] or row["is_dir"]:
                        conn.execute("DELETE FROM songs WHERE entry_id = ?", (entry_id,))

                conn.commit()

        entry.id = entry_id
        return entry_id

    def find_entry_by_id(self, entry_id: int) -> Entry | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT * FROM entries WHERE id = ?", (entry_id,))
                row = cursor.fetchone()
                return Entry.from_database_dict(dict(row)) if row else None

    def find_entry_by_path(self, path: str) -> Entry | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM entries WHERE lc_path = ?", (normalize_path(path),)
                )
                row = cursor.fetchone()
                return Entry.from_database_dict(dict(row)) if row else None

    def list_children(self, parent_dir: str) -> list[Entry]:
        """Get the direct children of a directory, directories first."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT * FROM entries WHERE lc_parent_dir = ?
                    ORDER BY is_dir DESC, lc_path
                """, (normalize_path(parent_dir),))
                return [Entry.from_database_dict(dict(row)) for row in cursor.fetchall()]

    def list_files_under(self, path: str) -> list[Entry]:
        """Get every file entry at or below a path, ordered by path."""
        lc_path = normalize_path(path)
        pattern = "/%" if lc_path == "/" else _escape_like(lc_path) + "/%"

        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT * FROM entries
                    WHERE is_dir = 0 AND (lc_path = ? OR lc_path LIKE ? ESCAPE '\\')
                    ORDER BY lc_path
                """, (lc_path, pattern))
                return [Entry.from_database_dict(dict(row)) for row in cursor.fetchall()]

    def delete_entry_tree(self, path: str) -> int:
        """
        Delete the entry at a path together with all its descendants.

        Songs of deleted entries go with them (ON DELETE CASCADE).

        Returns:
            Number of entries deleted.
        """
        lc_path = normalize_path(path)

        with self._lock:
            with self._get_connection() as conn:
                if lc_path == "/":
                    cursor = conn.execute("DELETE FROM entries")
                else:
                    cursor = conn.execute("""
                        DELETE FROM entries
                        WHERE lc_path = ? OR lc_path LIKE ? ESCAPE '\\'
                    """, (lc_path, _escape_like(lc_path) + "/%"))
                conn.commit()
                return cursor.rowcount

    def clear_entries(self) -> None:
        """Delete every entry and song (used when the remote requests a reset)."""
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM entries")
                conn.commit()

    def count_entries(self) -> int:
        with self._lock:
            with self._get_connection() as conn:
                return conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0]

    # =========================================================================
    # Song Store
    # =========================================================================

    def find_song_by_entry_id(self, entry_id: int) -> Song | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT * FROM songs WHERE entry_id = ?", (entry_id,))
                row = cursor.fetchone()
                return Song.from_database_dict(dict(row)) if row else None

    def upsert_song(self, song: Song) -> int:
        """
        Insert or fully overwrite the song of an entry.

        Returns:
            The database id of the song (also stored on song.id).

        Raises:
            DatabaseError: If the owning entry no longer exists.
        """
        row = song.to_database_dict()

        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO songs (
                        entry_id, album, artist, genre, title, duration,
                        track_number, total_tracks, has_latest_metadata,
                        has_valid_album_art, download_url, download_url_expiration,
                        updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(entry_id) DO UPDATE SET
                        album = excluded.album,
                        artist = excluded.artist,
                        genre = excluded.genre,
                        title = excluded.title,
                        duration = excluded.duration,
                        track_number = excluded.track_number,
                        total_tracks = excluded.total_tracks,
                        has_latest_metadata = excluded.has_latest_metadata,
                        has_valid_album_art = excluded.has_valid_album_art,
                        download_url = excluded.download_url,
                        download_url_expiration = excluded.download_url_expiration,
                        updated_at = excluded.updated_at
                """, (
                    row["entry_id"], row["album"], row["artist"], row["genre"],
                    row["title"], row["duration"], row["track_number"],
                    row["total_tracks"], row["has_latest_metadata"],
                    row["has_valid_album_art"], row["download_url"],
                    row["download_url_expiration"], self._now_iso()
                ))
                cursor = conn.execute(
                    "SELECT id FROM songs WHERE entry_id = ?", (row["entry_id"],)
                )
                song_id = cursor.fetchone()[0]
                conn.commit()

        song.id = song_id
        return song_id

    # =========================================================================
    # Preferences
    # =========================================================================

    def get_preference(self, key: str) -> str | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT value FROM preferences WHERE key = ?", (key,))
                row = cursor.fetchone()
                return row[0] if row else None

    def set_preference(self, key: str, value: str | None) -> None:
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO preferences (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """, (key, value))
                conn.commit()

    def get_delta_cursor(self) -> str | None:
        """Get the last acknowledged position in the remote change feed."""
        return self.get_preference(DELTA_CURSOR_KEY) or None

    def set_delta_cursor(self, cursor: str | None) -> None:
        self.set_preference(DELTA_CURSOR_KEY, cursor)
