"""
Synchronization service for kite-sync.

SyncService keeps the local database and song cache consistent with the
remote storage service, and enriches playable files with their tags and
artwork in the background.

Operations:
    synchronize_entry_db()          Cursor-based delta sync of the entry table
    fill_song_metadata(entries, f)  Attach songs, queue enrichment, refresh URLs
    get_cached_song_file(entry, ..) Local file of an entry, downloading it when
                                    the network cost policy allows
    get_album_art(media_id)         Embedded artwork of an entry

Workflow:
    1. synchronize_entry_db() pulls change pages and upserts entries,
       yielding every created or updated entry id.
    2. fill_song_metadata() maps entries read from the database to entries
       carrying a Song; stale songs are queued on the metadata sync queue.
    3. The queue's worker downloads or streams the file, extracts tags and
       artwork and writes the song back once.

Network Cost Policy:
    A missing file is downloaded into the cache only if
        (cheap network AND (metadata needed OR will be played))
        OR (metadata needed AND will be played)
    so metered data is spent only when the need is doubly justified.

Threading:
    synchronize_entry_db() and fill_song_metadata() run on the caller's
    thread and block on network and database calls. Enrichment runs on the
    queue's worker thread. Song writes for one entry are serialized with a
    per-entry lock shared by both paths.

Usage:
    service = SyncService.from_config(config)
    for entry_id in service.synchronize_entry_db():
        ...
    entries = service.fill_song_metadata(
        database.list_files_under("/Music"),
        CacheFlags.METADATA_TEXT | CacheFlags.METADATA_IMAGE
    )
"""

import threading
from collections.abc import Iterable, Iterator
from concurrent.futures import CancelledError
from contextlib import contextmanager
from pathlib import Path
from urllib.parse import urlsplit

import requests

from kite_sync.cache.lru_cache import FileLRUCache
from kite_sync.cache.naming import make_album_art_signature, make_cache_file_name
from kite_sync.core.config import Config
from kite_sync.core.database import Database
from kite_sync.core.exceptions import (
    ArtworkError,
    ConsistencyError,
    DatabaseError,
    ExtractionError,
    MalformedURLError,
    RemoteServiceError,
)
from kite_sync.core.logger import get_logger, log_metadata_failure
from kite_sync.library.models import AsyncCacheRequest, CacheFlags, Entry, Song
from kite_sync.metadata.artwork import LARGE_ALBUM_ART_DIMENSIONS, AlbumArtCache
from kite_sync.metadata.retriever import MetadataKey, MetadataRetriever
from kite_sync.remote.client import RemoteStorageClient
from kite_sync.remote.models import RemoteMetadata
from kite_sync.sync.network import NetworkCostOracle
from kite_sync.sync.queue import MetadataSyncQueue

logger = get_logger(__name__)


def validate_download_url(url: str) -> str:
    """
    Check that a temporary link is an absolute http(s) URL.

    Raises:
        MalformedURLError: If the link cannot be used for streaming.
    """
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise MalformedURLError(f"Malformed download URL: {url}", details={"url": url}) from e

    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise MalformedURLError(f"Malformed download URL: {url}", details={"url": url})
    return url


class EntryLocks:
    """
    Registry of per-entry locks.

    Locks are created on first use and dropped when no thread holds or
    waits for them, so the registry stays as small as the set of entries
    currently being worked on.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int | None, list] = {}

    @contextmanager
    def hold(self, entry_id: int | None):
        with self._guard:
            slot = self._locks.setdefault(entry_id, [threading.RLock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[entry_id]


class SyncService:
    """
    Long-lived synchronization engine, one instance per process.

    Holds the collaborators (remote client, database, caches, network
    oracle) and the metadata sync queue.
    """

    def __init__(
        self,
        remote: RemoteStorageClient,
        database: Database,
        song_cache: FileLRUCache,
        art_cache: AlbumArtCache,
        network: NetworkCostOracle,
        retriever_class: type[MetadataRetriever] = MetadataRetriever,
        http_session: requests.Session | None = None,
        stream_timeout: int = 30,
    ) -> None:
        self._remote = remote
        self._db = database
        self._song_cache = song_cache
        self._art_cache = art_cache
        self._network = network
        self._retriever_class = retriever_class
        self._http_session = http_session
        self._stream_timeout = stream_timeout
        self._entry_locks = EntryLocks()
        self._metadata_sync_queue = MetadataSyncQueue(self.synchronize_song)

    @classmethod
    def from_config(cls, config: Config) -> "SyncService":
        """
        Wire a service from configuration.

        Creates the storage directory if needed.

        Raises:
            DatabaseError: If the database cannot be opened.
            CacheError: If the song cache directory is unusable.
        """
        config.storage.directory.mkdir(parents=True, exist_ok=True)

        return cls(
            remote=RemoteStorageClient(config.remote),
            database=Database(config.storage.database_path),
            song_cache=FileLRUCache(config.cache.directory, config.cache.capacity_bytes),
            art_cache=AlbumArtCache(config.storage.album_art_directory),
            network=NetworkCostOracle.from_config(config.network),
            http_session=requests.Session(),
            stream_timeout=config.remote.timeout,
        )

    @property
    def database(self) -> Database:
        return self._db

    @property
    def network(self) -> NetworkCostOracle:
        return self._network

    @property
    def metadata_sync_queue(self) -> MetadataSyncQueue:
        return self._metadata_sync_queue

    def close(self, timeout: float | None = None) -> None:
        """Stop accepting work, let queued requests finish, release resources."""
        self._metadata_sync_queue.close()
        if not self._metadata_sync_queue.wait_until_idle(timeout):
            logger.warning("Metadata sync queue still busy at shutdown")
        self._art_cache.shutdown()
        self._db.close()

    # =========================================================================
    # Delta sync
    # =========================================================================

    def synchronize_entry_db(self) -> Iterator[int]:
        """
        Pull remote changes into the entry table.

        Returns a lazy iterator: nothing happens until it is consumed, and
        each consumption performs a new run. Every created or updated entry
        id is yielded in remote order.

        The cursor is persisted after each processed page, so a run that
        fails or is abandoned resumes from the last completed page.

        Raises:
            RemoteServiceError: When fetching a page fails. The run stops;
                                no retry is attempted.
        """
        cursor = self._db.get_delta_cursor()
        page_counter = 0
        saved = 0
        deleted = 0

        if cursor is None:
            logger.info("No delta cursor stored, starting full synchronization")
        else:
            logger.debug("Resuming synchronization from stored delta cursor")

        while True:
            try:
                page = self._remote.fetch_delta_page(cursor)
            except RemoteServiceError as e:
                logger.error(f"Synchronization stopped after {page_counter} pages: {e}")
                raise

            page_counter += 1
            logger.debug(f"Processing delta page #{page_counter} size: {len(page.entries)}")

            if page.reset:
                logger.debug("Remote requested reset, clearing local entries")
                self._db.clear_entries()

            for delta_entry in page.entries:
                if delta_entry.is_deletion:
                    count = self._db.delete_entry_tree(delta_entry.lc_path)
                    deleted += count
                    logger.debug(f"Deleted {count} entries under: {delta_entry.lc_path}")
                    continue

                entry = self._entry_from_metadata(delta_entry.metadata)
                entry_id = self._db.upsert_entry(entry)
                saved += 1
                logger.debug(f"Saved entry for: {entry.full_path} with id: {entry_id}")

                yield entry_id

            cursor = page.cursor
            self._db.set_delta_cursor(cursor)

            if not page.has_more:
                break

        logger.info(
            f"Synchronization finished: {page_counter} pages, "
            f"{saved} entries saved, {deleted} entries deleted"
        )

    def _entry_from_metadata(self, metadata: RemoteMetadata) -> Entry:
        return Entry(
            is_dir=metadata.is_dir,
            root=metadata.root,
            parent_dir=metadata.parent_path,
            filename=metadata.file_name,
            rev=metadata.rev,
            hash=metadata.hash,
            modified=metadata.modified,
            client_mtime=metadata.client_mtime,
            mime_type=metadata.mime_type,
            icon=metadata.icon,
            thumb_exists=metadata.thumb_exists,
        )

    # =========================================================================
    # Metadata fill
    # =========================================================================

    def fill_song_metadata(self, entries: Iterable[Entry], cache_flags: CacheFlags) -> Iterator[Entry]:
        """
        Attach a Song to every file entry, in input order.

        Directories pass through untouched. For files, the stored Song is
        loaded (or an empty one created) and attached as entry.song. Stale
        songs are queued for background enrichment when text or image
        metadata is requested. When the song must be playable and is not
        cached, a fresh download URL is requested right away; failing to
        get one is logged and does not stop the iteration.

        Side effects for an element happen before it is yielded. Queuing
        never waits for the enrichment itself.
        """
        cache_flags = CacheFlags(cache_flags)

        for entry in entries:
            logger.debug(f"Filling song metadata for: {entry.full_path}")

            if entry.is_dir:
                yield entry
                continue

            song = self._db.find_song_by_entry_id(entry.id)
            if song is None:
                song = Song(entry_id=entry.id)
            entry.song = song

            if not song.has_latest_metadata and cache_flags.wants_metadata:
                logger.debug(f"Metadata update requested for: {entry.full_path}, queueing")
                self._metadata_sync_queue.submit(AsyncCacheRequest(entry, cache_flags))

            if CacheFlags.SONG_PLAYABLE in cache_flags:
                self._refresh_playable(entry)

            yield entry

    def _refresh_playable(self, entry: Entry) -> None:
        with self._entry_locks.hold(entry.id):
            if self.get_cached_song_file(entry) is not None:
                return
            try:
                if self.refresh_download_url(entry):
                    self._db.upsert_song(entry.song)
            except (RemoteServiceError, MalformedURLError) as e:
                logger.warning(f"Unable to refresh download URL for: {entry.full_path}: {e}")
            except DatabaseError as e:
                logger.error(f"Unable to save download URL for: {entry.full_path}: {e}")

    def refresh_download_url(self, entry: Entry) -> bool:
        """
        Make sure entry.song carries an unexpired streaming URL.

        Only the in-memory Song is updated; persisting it is up to the caller.

        Returns:
            True if a new URL was generated, False if the current one is valid.

        Raises:
            RemoteServiceError: If the link cannot be generated.
            MalformedURLError: If the service returned an unusable link.
        """
        song = entry.song
        if song.has_valid_download_url():
            return False

        link = self._remote.generate_temporary_link(entry.full_path)
        song.download_url = validate_download_url(link.url)
        song.download_url_expiration = link.expires

        logger.debug(f"Generated new download URL for: {entry.full_path}")
        return True

    # =========================================================================
    # Metadata sync worker
    # =========================================================================

    def synchronize_song(self, request: AsyncCacheRequest) -> None:
        """
        Enrich one song: resolve its file, extract tags and artwork, save.

        Runs on the metadata sync queue's worker thread. Every failure is
        logged and contained; the song is written at most once, at the end.
        """
        entry = request.entry
        cache_flags = request.cache_flags

        logger.debug(f"Synchronizing song for: {entry.full_path}")

        try:
            self._check_consistency(entry)
        except ConsistencyError as e:
            logger.warning(f"{e.message}. Ignoring request for: {entry.full_path}")
            return

        song = entry.song
        update_song_in_db = False

        cached_song_file = self.get_cached_song_file(entry, -1, cache_flags)

        if cached_song_file is None and CacheFlags.SONG_PLAYABLE in cache_flags:
            logger.debug(f"Song not cached, refreshing URL for: {entry.full_path}")
            with self._entry_locks.hold(entry.id):
                try:
                    self.refresh_download_url(entry)
                except (RemoteServiceError, MalformedURLError) as e:
                    song.download_url = None
                    song.download_url_expiration = None
                    logger.warning(f"Unable to refresh download URL for: {entry.full_path}: {e}")
            update_song_in_db = True

        retriever = None

        # Current text metadata needs no retriever, unless artwork is wanted
        # and the file is at hand
        if not song.has_latest_metadata or (
            CacheFlags.METADATA_IMAGE in cache_flags and cached_song_file is not None
        ):
            retriever = self._initialize_retriever(entry, cached_song_file)

        if (
            retriever is not None
            and not song.has_latest_metadata
            and CacheFlags.METADATA_TEXT in cache_flags
        ):
            self._extract_text_metadata(entry, retriever)
            update_song_in_db = True

        if retriever is not None and self._cache_album_art(entry, retriever):
            update_song_in_db = True

        if update_song_in_db:
            with self._entry_locks.hold(entry.id):
                try:
                    song_id = self._db.upsert_song(song)
                    logger.debug(f"Updated song for: {entry.full_path} with id: {song_id}")
                except DatabaseError as e:
                    logger.error(f"Unable to save song for: {entry.full_path}: {e}")

    def _check_consistency(self, entry: Entry) -> None:
        if entry.song is None:
            raise ConsistencyError(
                "Song is missing for entry",
                details={"path": entry.full_path, "entry_id": entry.id}
            )
        if entry.song.entry_id != entry.id:
            raise ConsistencyError(
                "Song has mismatching entry id",
                details={
                    "path": entry.full_path,
                    "entry_id": entry.id,
                    "song_entry_id": entry.song.entry_id,
                }
            )

    def _initialize_retriever(self, entry: Entry, cached_song_file: Path | None) -> MetadataRetriever | None:
        """
        Open a retriever on the cached file, or else on the download URL.

        Returns None when neither source is available or opening fails.
        """
        song = entry.song

        try:
            if cached_song_file is not None:
                logger.debug(f"Opening metadata retriever for: {entry.full_path} with file: {cached_song_file}")
                return self._retriever_class.from_file(cached_song_file)
            if song is not None and song.download_url is not None:
                logger.debug(f"Opening metadata retriever for: {entry.full_path} with URL")
                return self._retriever_class.from_url(
                    song.download_url,
                    session=self._http_session,
                    timeout=self._stream_timeout,
                )
        except ExtractionError as e:
            log_metadata_failure(logger, entry.full_path, "retriever", e.message)
        return None

    def _extract_text_metadata(self, entry: Entry, retriever: MetadataRetriever) -> None:
        """
        Copy text tags onto the song and mark it as fully tagged.

        A numeric field that does not parse is logged and left unset; the
        other fields are still extracted.
        """
        song = entry.song

        song.album = retriever.extract_metadata(MetadataKey.ALBUM)
        song.artist = retriever.extract_metadata(MetadataKey.ARTIST)
        song.genre = retriever.extract_metadata(MetadataKey.GENRE)
        song.title = retriever.extract_metadata(MetadataKey.TITLE)

        for key, attribute in [
            (MetadataKey.DURATION, "duration"),
            (MetadataKey.CD_TRACK_NUMBER, "track_number"),
            (MetadataKey.NUM_TRACKS, "total_tracks"),
        ]:
            raw = retriever.extract_metadata(key)
            if raw is None:
                continue
            try:
                setattr(song, attribute, int(raw))
            except ValueError:
                log_metadata_failure(logger, entry.full_path, attribute, f"invalid value {raw!r}")

        song.has_latest_metadata = True
        logger.debug(f"Updated text metadata for: {entry.full_path}")

    def _cache_album_art(self, entry: Entry, retriever: MetadataRetriever) -> bool:
        """
        Cache the embedded picture of an entry at the large thumbnail size.

        Waits for the art cache to finish, so the worker handles one picture
        at a time.

        Returns:
            True if the song was modified (artwork marked invalid).
        """
        song = entry.song

        try:
            picture = retriever.get_embedded_picture()
            if not picture:
                song.has_valid_album_art = False
                logger.debug(f"No embedded picture in: {entry.full_path}")
                return True

            future = self._art_cache.submit(
                make_album_art_signature(entry), picture, LARGE_ALBUM_ART_DIMENSIONS
            )
            future.result()
            logger.debug(f"Cached album art image for: {entry.full_path}")
            return False
        except (ArtworkError, CancelledError) as e:
            song.has_valid_album_art = False
            log_metadata_failure(logger, entry.full_path, "artwork", str(e))
            return True

    # =========================================================================
    # Cache materialization
    # =========================================================================

    def get_cached_song_file(
        self,
        entry: Entry,
        wait_timeout: float = 0,
        cache_flags: CacheFlags | None = None
    ) -> Path | None:
        """
        Return the cached file of an entry, downloading it if worth it.

        Args:
            entry: File entry; entry.song is consulted for metadata state.
            wait_timeout: Seconds to wait for a download of the same file
                          already running elsewhere. Zero or negative never
                          waits.
            cache_flags: What the caller needs. None only probes the cache.

        Returns:
            Path of the cached file, or None if absent and not fetched.
        """
        cached_song_file = self._song_cache.get(make_cache_file_name(entry), wait_timeout)

        if cached_song_file is not None or cache_flags is None:
            return cached_song_file

        cache_flags = CacheFlags(cache_flags)
        song = entry.song

        is_cheap_network = not self._network.is_metered()
        is_metadata_needed = (
            (song is None or not song.has_latest_metadata)
            and CacheFlags.METADATA_TEXT in cache_flags
        )
        will_song_be_played = CacheFlags.SONG_PLAYABLE in cache_flags

        if (is_cheap_network and (is_metadata_needed or will_song_be_played)) or (
            is_metadata_needed and will_song_be_played
        ):
            logger.debug(f"Attempting to save to cache for entry: {entry.full_path}")
            cached_song_file = self._download_song_data_into_cache(entry)

        return cached_song_file

    def _download_song_data_into_cache(self, entry: Entry) -> Path | None:
        logger.debug(f"Starting download of: {entry.full_path}")

        new_cache_file = self._song_cache.new_file(
            make_cache_file_name(entry),
            lambda sink: self._remote.download_file(entry.full_path, entry.rev, sink),
        )

        if new_cache_file is not None:
            logger.debug(f"Finished download of: {entry.full_path}")
        else:
            logger.warning(f"Failed download of: {entry.full_path}")

        return new_cache_file

    # =========================================================================
    # Album art
    # =========================================================================

    def get_album_art(self, media_id: int | str) -> Iterator[bytes]:
        """
        Yield the embedded artwork of an entry, at most once.

        Nothing is yielded if the entry is unknown, has no song yet, its
        artwork is already known to be invalid, or no retriever can be
        opened.

        Raises:
            ArtworkError: If the file turns out to contain no image data.
                          The song is marked accordingly before raising.
        """
        try:
            entry_id = int(media_id)
        except (TypeError, ValueError):
            logger.warning(f"Invalid media id: {media_id!r}")
            return

        entry = self._db.find_entry_by_id(entry_id)
        if entry is None:
            return

        song = self._db.find_song_by_entry_id(entry.id)
        if song is None or not song.has_valid_album_art:
            return
        entry.song = song

        retriever = self._initialize_retriever(entry, self.get_cached_song_file(entry))
        if retriever is None:
            return

        picture = retriever.get_embedded_picture()
        if picture:
            yield picture
            return

        song.has_valid_album_art = False
        with self._entry_locks.hold(entry.id):
            self._db.upsert_song(song)

        logger.warning(f"Album art requested but missing for: {entry.full_path}")
        raise ArtworkError("File contains no image data.", details={"path": entry.full_path})
