"""
HTTP client for the remote storage service.

This module wraps the storage service's HTTP API (Dropbox v2 compatible)
behind the three calls the sync engine needs:

    fetch_delta_page(cursor)        One page of the change feed
    generate_temporary_link(path)   Time-limited streaming URL
    download_file(path, rev, sink)  Stream a file revision into a writable

Change Feed:
    A missing cursor starts a full, recursive listing of the root. The
    cursor returned with each page resumes the feed. When the service
    reports that a cursor can no longer be continued ("reset"), the client
    restarts the listing and flags the page with reset=True so the engine
    clears its mirror first.

Error Handling:
    Every transport or HTTP error is raised as RemoteServiceError. No retry
    is attempted here; callers own their retry policy.

Usage:
    client = RemoteStorageClient(config.remote)
    page = client.fetch_delta_page(None)
    for delta_entry in page.entries:
        ...
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO

import requests

from kite_sync.core.config import RemoteConfig
from kite_sync.core.exceptions import RemoteServiceError
from kite_sync.core.logger import get_logger
from kite_sync.library.models import normalize_path
from kite_sync.remote.models import DeltaEntry, DeltaPage, RemoteMetadata, TemporaryLink

logger = get_logger(__name__)


# Temporary links are valid for four hours
TEMPORARY_LINK_LIFETIME = timedelta(hours=4)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class RemoteStorageClient:
    """
    requests-based client for the remote storage API.

    One instance holds a requests.Session (connection pooling + auth
    header) and is shared by the delta sync and the metadata worker.
    requests.Session is safe for this usage pattern since every call is
    a self-contained request.
    """

    def __init__(self, config: RemoteConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.session.headers["Authorization"] = f"Bearer {config.access_token}"

    # =========================================================================
    # Change feed
    # =========================================================================

    def fetch_delta_page(self, cursor: str | None) -> DeltaPage:
        """
        Fetch one page of changes.

        Args:
            cursor: Position returned by the previous page, or None/"" for
                    a full listing from the beginning.

        Returns:
            DeltaPage with records in remote order.

        Raises:
            RemoteServiceError: On any transport or API failure.
        """
        reset = False

        if cursor:
            try:
                data = self._rpc("files/list_folder/continue", {"cursor": cursor})
            except RemoteServiceError as e:
                if not e.details.get("error_summary", "").startswith("reset"):
                    raise
                logger.warning("Delta cursor expired, restarting full listing")
                data = self._list_root()
                reset = True
        else:
            data = self._list_root()
            reset = True

        try:
            entries = tuple(self._parse_delta_entry(item) for item in data["entries"])
            return DeltaPage(
                entries=entries,
                cursor=data["cursor"],
                has_more=bool(data.get("has_more", False)),
                reset=reset,
            )
        except (KeyError, TypeError) as e:
            raise RemoteServiceError(
                f"Unexpected delta page format: {e}",
                details={"original_error": str(e)}
            ) from e

    def _list_root(self) -> dict[str, Any]:
        return self._rpc("files/list_folder", {
            "path": "",
            "recursive": True,
            "include_deleted": True,
        })

    def _parse_delta_entry(self, item: dict[str, Any]) -> DeltaEntry:
        lc_path = normalize_path(item.get("path_lower") or item["path_display"])
        if item.get(".tag") == "deleted":
            return DeltaEntry(lc_path=lc_path, metadata=None)
        return DeltaEntry(lc_path=lc_path, metadata=RemoteMetadata.from_api(item, self.config.root))

    # =========================================================================
    # File access
    # =========================================================================

    def generate_temporary_link(self, path: str) -> TemporaryLink:
        """
        Ask the service for a streaming URL for a file.

        The URL is returned as-is; validation is the caller's job.

        Raises:
            RemoteServiceError: On any transport or API failure.
        """
        data = self._rpc("files/get_temporary_link", {"path": path})

        link = data.get("link")
        if not isinstance(link, str):
            raise RemoteServiceError(
                "Temporary link response has no link",
                details={"path": path}
            )

        return TemporaryLink(url=link, expires=datetime.now(timezone.utc) + TEMPORARY_LINK_LIFETIME)

    def download_file(self, path: str, rev: str | None, sink: BinaryIO) -> int:
        """
        Stream a file revision into a writable binary object.

        Args:
            path: Remote path of the file.
            rev: Revision to fetch; None fetches the latest revision.
            sink: Writable binary file object.

        Returns:
            Number of bytes written.

        Raises:
            RemoteServiceError: On any transport or API failure. Bytes may
                                already have been written to sink.
        """
        arg = {"path": f"rev:{rev}" if rev else path}
        url = f"{self.config.content_url}/files/download"

        try:
            with self.session.post(
                url,
                headers={"Dropbox-API-Arg": json.dumps(arg)},
                stream=True,
                timeout=self.config.timeout,
            ) as response:
                self._raise_for_status(response, "files/download")
                written = 0
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        sink.write(chunk)
                        written += len(chunk)
        except requests.RequestException as e:
            raise RemoteServiceError(
                f"Download failed for {path}: {e}",
                details={"path": path, "rev": rev, "original_error": str(e)}
            ) from e

        logger.debug(f"Downloaded {written} bytes of {path}")
        return written

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _rpc(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.config.api_url}/{endpoint}"

        try:
            response = self.session.post(url, json=payload, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise RemoteServiceError(
                f"Request to {endpoint} failed: {e}",
                details={"endpoint": endpoint, "original_error": str(e)}
            ) from e

        self._raise_for_status(response, endpoint)

        try:
            return response.json()
        except ValueError as e:
            raise RemoteServiceError(
                f"Invalid JSON from {endpoint}",
                details={"endpoint": endpoint, "original_error": str(e)}
            ) from e

    def _raise_for_status(self, response: requests.Response, endpoint: str) -> None:
        if response.status_code < 400:
            return

        error_summary = ""
        try:
            body = response.json()
            if isinstance(body, dict):
                error_summary = str(body.get("error_summary", ""))
        except ValueError:
            pass

        raise RemoteServiceError(
            f"{endpoint} returned HTTP {response.status_code} {error_summary}".strip(),
            details={
                "endpoint": endpoint,
                "status_code": response.status_code,
                "error_summary": error_summary,
            },
            is_auth_error=response.status_code == 401,
            is_rate_limit=response.status_code == 429,
        )
