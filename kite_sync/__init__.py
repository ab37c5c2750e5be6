"""
kite-sync: Mirror a remote music folder and its metadata locally.

This package keeps a local SQLite database and a bounded on-disk file
cache consistent with a remote file storage service, and extracts text
tags and embedded artwork from the audio files it finds there.

Architecture:
    The work is split into stages that can be run together or separately:

    DELTA SYNC (sync/service.py):
        - Load the cursor of the last processed change page
        - Fetch change pages from the remote until none is left
        - Delete removed subtrees, upsert created and updated entries
        - Persist the cursor after every page

    METADATA FILL (sync/service.py):
        - Attach a Song to every file entry
        - Queue stale songs for background enrichment
        - Refresh streaming URLs of songs about to be played

    METADATA SYNC (sync/queue.py + sync/service.py):
        - Deduplicate enrichment requests
        - Download the file into the cache when the network policy allows
        - Extract tags (mutagen) and cache artwork (Pillow)
        - Save the song once per request

Modules:
    core/       - Configuration, database, logging, exceptions
    library/    - Entry, Song, CacheFlags, AsyncCacheRequest
    remote/     - Remote storage API client and models
    cache/      - LRU song file cache and cache key derivation
    metadata/   - Tag extraction and album art cache
    sync/       - Sync service, metadata queue, network oracle
    cli.py      - Command-line interface

Usage:
    Command Line:
        kite-sync --sync
        kite-sync --fill /Music --text --image
        kite-sync --art 42 --out cover.jpg

    Python API:
        from kite_sync.core import load_config, setup_logging
        from kite_sync.library import CacheFlags
        from kite_sync.sync import SyncService

        config = load_config()
        setup_logging(config.storage.directory)
        service = SyncService.from_config(config)

        for entry_id in service.synchronize_entry_db():
            pass

        entries = service.database.list_files_under("/Music")
        for entry in service.fill_song_metadata(entries, CacheFlags.METADATA_TEXT):
            print(entry.full_path)
        service.metadata_sync_queue.wait_until_idle()

Dependencies:
    - requests: Remote storage HTTP API
    - mutagen: Audio tag and picture extraction
    - Pillow: Album art thumbnails
    - rich-click: CLI framework with colors
    - tqdm: Progress bars
    - pyyaml: Configuration file parsing
"""

__version__ = "0.1.0"
__author__ = "kite-sync"
__license__ = "MIT"

# Convenience imports for common usage
from kite_sync.core import (
    Config,
    ConfigError,
    Database,
    DatabaseError,
    KiteSyncError,
    RemoteServiceError,
    get_logger,
    load_config,
    setup_logging,
)
from kite_sync.library import AsyncCacheRequest, CacheFlags, Entry, Song
from kite_sync.sync import SyncService

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "Database",
    "setup_logging",
    "get_logger",
    # Exceptions
    "KiteSyncError",
    "ConfigError",
    "DatabaseError",
    "RemoteServiceError",
    # Models
    "AsyncCacheRequest",
    "CacheFlags",
    "Entry",
    "Song",
    # Service
    "SyncService",
]
