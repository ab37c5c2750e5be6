"""
Capacity-bounded file cache with least-recently-used eviction.

Cached files are immutable: a key is produced once by a writer callback
and afterwards only read, touched or evicted. The cache never holds more
than `capacity_bytes` on disk once a production completes; the least
recently used files are deleted to make room.

Production Protocol:
    new_file(key, writer) writes into a temporary file in the cache
    directory, then renames it into place. While a key is being produced,
    other threads calling get(key, timeout) with a positive timeout wait
    for it instead of returning None.

Timeout Semantics for get():
    timeout > 0   wait up to `timeout` seconds for an in-flight production
    timeout == 0  return immediately if the file is not already present
    timeout < 0   same as 0; callers use it to state that the probe must
                  never wait on or start a production

Usage:
    cache = FileLRUCache(Path("~/.kite-sync/songs"), capacity_bytes=512 * 1024 * 1024)

    path = cache.get("3f2a...mp3", timeout=0)
    if path is None:
        path = cache.new_file("3f2a...mp3", lambda sink: client.download_file(p, rev, sink))
"""

import os
import tempfile
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import BinaryIO, Callable

from kite_sync.core.exceptions import CacheError
from kite_sync.core.logger import get_logger

logger = get_logger(__name__)


TEMP_PREFIX = ".partial-"


class FileLRUCache:
    """
    Thread-safe LRU file cache.

    The in-memory index maps key -> size and is ordered from least to most
    recently used. On start-up it is rebuilt from the directory content,
    oldest modification time first; leftovers of interrupted productions
    are removed.
    """

    def __init__(self, directory: Path, capacity_bytes: int) -> None:
        if capacity_bytes < 1:
            raise CacheError(
                "Cache capacity must be positive",
                details={"capacity_bytes": capacity_bytes}
            )

        self.directory = directory
        self.capacity_bytes = capacity_bytes
        self._index: OrderedDict[str, int] = OrderedDict()
        self._in_progress: set[str] = set()
        self._size = 0
        self._condition = threading.Condition()

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(
                f"Cannot create cache directory: {e}",
                details={"path": str(directory), "original_error": str(e)}
            ) from e

        self._load_index()

    def _load_index(self) -> None:
        files = []
        for path in self.directory.iterdir():
            if not path.is_file():
                continue
            if path.name.startswith(TEMP_PREFIX):
                path.unlink(missing_ok=True)
                continue
            stat = path.stat()
            files.append((stat.st_mtime, path.name, stat.st_size))

        for _, name, size in sorted(files):
            self._index[name] = size
            self._size += size

        self._trim()
        logger.debug(f"Song cache loaded: {len(self._index)} files, {self._size} bytes")

    @property
    def size(self) -> int:
        with self._condition:
            return self._size

    def __contains__(self, key: str) -> bool:
        with self._condition:
            return key in self._index

    def get(self, key: str, timeout: float = 0) -> Path | None:
        """
        Look up a cached file and mark it as recently used.

        Args:
            key: Cache file name.
            timeout: Seconds to wait for an in-flight production of the same
                     key. Zero or negative never waits.

        Returns:
            Path of the cached file, or None.
        """
        deadline = time.monotonic() + timeout if timeout > 0 else None

        with self._condition:
            while key not in self._index:
                if deadline is None or key not in self._in_progress:
                    return None
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._condition.wait(remaining)

            path = self.directory / key
            if not path.exists():
                # Removed behind our back
                self._forget(key)
                return None

            self._index.move_to_end(key)
            try:
                os.utime(path)
            except OSError:
                pass
            return path

    def new_file(self, key: str, writer: Callable[[BinaryIO], object]) -> Path | None:
        """
        Produce a cache file by running writer against a fresh binary sink.

        If another thread is already producing the same key, this waits for
        it and returns its result instead of downloading twice.

        Args:
            key: Cache file name.
            writer: Callable writing the file content into the given sink.
                    Any exception it raises is logged and yields None.

        Returns:
            Path of the new cached file, or None if production failed.
        """
        with self._condition:
            while key in self._in_progress:
                self._condition.wait()
            if key in self._index:
                self._index.move_to_end(key)
                return self.directory / key
            self._in_progress.add(key)

        temp_path = None
        try:
            fd, temp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=self.directory)
            temp_path = Path(temp_name)
            with os.fdopen(fd, "wb") as sink:
                writer(sink)
            size = temp_path.stat().st_size
            os.replace(temp_path, self.directory / key)
            temp_path = None
        except Exception as e:
            logger.warning(f"Failed to produce cache file {key}: {e}")
            with self._condition:
                self._in_progress.discard(key)
                self._condition.notify_all()
            return None
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)

        with self._condition:
            self._in_progress.discard(key)
            self._index[key] = size
            self._size += size
            self._trim(keep=key)
            self._condition.notify_all()
            return self.directory / key if key in self._index else None

    def evict(self, key: str) -> None:
        """Remove a single file from the cache."""
        with self._condition:
            if key in self._index:
                (self.directory / key).unlink(missing_ok=True)
                self._forget(key)

    def _forget(self, key: str) -> None:
        self._size -= self._index.pop(key, 0)

    def _trim(self, keep: str | None = None) -> None:
        """Evict least recently used files until the cache fits its capacity."""
        while self._size > self.capacity_bytes and self._index:
            oldest = next(iter(self._index))
            if oldest == keep and len(self._index) == 1:
                # A single file larger than the cache is not kept
                logger.warning(f"Cache file {oldest} exceeds cache capacity, discarding")
            (self.directory / oldest).unlink(missing_ok=True)
            self._forget(oldest)
            logger.debug(f"Evicted {oldest} from song cache")
