"""
Deduplicating work queue for metadata synchronization.

Producers (the metadata fill stage, on whatever thread the caller runs)
submit AsyncCacheRequest objects; a single background worker thread
consumes them in submission order.

Semantics:
    - submit() never blocks and the backlog is unbounded.
    - A request equal to one still waiting in the backlog (same entry id,
      same flags) is dropped. Once a request has been taken by the worker
      its key is released, so a later identical request is processed again.
    - Requests for the same entry with different flags are all kept and
      processed one after the other by the same worker.
    - A worker thread is started when work arrives and no worker is active;
      it exits when the backlog is empty. At most one worker runs at a time.
    - An exception raised by the handler is logged and the worker moves on
      to the next request.

Usage:
    queue = MetadataSyncQueue(service.synchronize_song)
    queue.submit(AsyncCacheRequest(entry, CacheFlags.METADATA_TEXT))
    queue.wait_until_idle(timeout=30)
"""

import itertools
import threading
from collections import deque
from typing import Callable

from kite_sync.core.logger import get_logger
from kite_sync.library.models import AsyncCacheRequest

logger = get_logger(__name__)


class MetadataSyncQueue:
    """
    Unbounded, deduplicating, single-consumer queue of AsyncCacheRequest.

    Attributes:
        name: Prefix of worker thread names.
    """

    def __init__(
        self,
        handler: Callable[[AsyncCacheRequest], None],
        name: str = "metadata-sync"
    ) -> None:
        self.name = name
        self._handler = handler
        self._backlog: deque[AsyncCacheRequest] = deque()
        self._pending: set[AsyncCacheRequest] = set()
        self._condition = threading.Condition()
        self._worker: threading.Thread | None = None
        self._closed = False
        self._worker_ids = itertools.count(1)

    def submit(self, request: AsyncCacheRequest) -> bool:
        """
        Add a request to the backlog.

        Returns:
            True if the request was queued, False if it duplicated a request
            already waiting or the queue is closed.
        """
        with self._condition:
            if self._closed:
                logger.warning(f"Metadata sync queue closed, dropping {request!r}")
                return False

            if request in self._pending:
                logger.debug(f"Dropping duplicate {request!r}")
                return False

            self._pending.add(request)
            self._backlog.append(request)

            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._drain,
                    name=f"{self.name}-{next(self._worker_ids)}",
                    daemon=True,
                )
                self._worker.start()

        return True

    def _drain(self) -> None:
        logger.debug(f"Metadata sync worker started on {threading.current_thread().name}")

        while True:
            with self._condition:
                if not self._backlog:
                    self._worker = None
                    self._condition.notify_all()
                    logger.debug("Metadata sync backlog drained")
                    return
                request = self._backlog.popleft()
                self._pending.discard(request)

            try:
                self._handler(request)
            except Exception:
                logger.exception(f"Metadata sync failed for {request!r}")

    def pending_count(self) -> int:
        """Number of requests waiting (not counting one being processed)."""
        with self._condition:
            return len(self._backlog)

    def is_idle(self) -> bool:
        with self._condition:
            return self._worker is None and not self._backlog

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """
        Block until the backlog is drained and the worker has exited.

        Returns:
            True if the queue became idle, False on timeout.
        """
        with self._condition:
            return self._condition.wait_for(
                lambda: self._worker is None and not self._backlog,
                timeout=timeout,
            )

    def close(self) -> None:
        """Reject further submissions. Requests already queued still run."""
        with self._condition:
            self._closed = True
