"""Test configuration and fixtures"""

import io
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from PIL import Image

from kite_sync.cache.lru_cache import FileLRUCache
from kite_sync.core.database import Database
from kite_sync.core.exceptions import ExtractionError, RemoteServiceError
from kite_sync.library.models import Entry, normalize_path
from kite_sync.metadata.artwork import AlbumArtCache
from kite_sync.remote.models import DeltaEntry, DeltaPage, RemoteMetadata, TemporaryLink
from kite_sync.sync.network import NetworkCostOracle
from kite_sync.sync.service import SyncService


class Records:
    """Builders for change records and pages"""

    @staticmethod
    def file(path, rev="r1", mime_type="audio/mpeg"):
        return DeltaEntry(
            lc_path=normalize_path(path),
            metadata=RemoteMetadata(path=path, rev=rev, mime_type=mime_type, icon="page_white_sound"),
        )

    @staticmethod
    def folder(path):
        return DeltaEntry(
            lc_path=normalize_path(path),
            metadata=RemoteMetadata(path=path, is_dir=True, icon="folder"),
        )

    @staticmethod
    def deleted(path):
        return DeltaEntry(lc_path=normalize_path(path), metadata=None)

    @staticmethod
    def page(*entries, cursor, has_more=False, reset=False):
        return DeltaPage(entries=tuple(entries), cursor=cursor, has_more=has_more, reset=reset)


class FakeRemoteClient:
    """
    In-memory stand-in for RemoteStorageClient.

    pages maps the cursor a page is requested with to the page (or to an
    exception to raise). Unknown cursors return an empty final page.
    files maps lower-cased paths to file content.
    """

    def __init__(self):
        self.pages = {}
        self.files = {}
        self.link_url = None
        self.link_error = None
        self.delta_calls = []
        self.link_calls = []
        self.download_calls = []

    def fetch_delta_page(self, cursor):
        self.delta_calls.append(cursor)
        page = self.pages.get(cursor)
        if isinstance(page, Exception):
            raise page
        if page is None:
            return DeltaPage(entries=(), cursor=cursor or "c0", has_more=False)
        return page

    def generate_temporary_link(self, path):
        self.link_calls.append(path)
        if self.link_error is not None:
            raise self.link_error
        return TemporaryLink(
            url=self.link_url or f"https://dl.example.com{path}",
            expires=datetime.now(timezone.utc) + timedelta(hours=4),
        )

    def download_file(self, path, rev, sink):
        self.download_calls.append((path, rev))
        data = self.files.get(normalize_path(path))
        if data is None:
            raise RemoteServiceError(f"Not found: {path}", details={"path": path})
        sink.write(data)
        return len(data)


class FakeRetriever:
    """Retriever returning canned tags and picture; records what it was opened on"""

    tags = {}
    picture = None
    fail_open = False
    opened = []

    def __init__(self, source):
        self.source = source

    @classmethod
    def from_file(cls, path):
        cls.opened.append(("file", Path(path)))
        if cls.fail_open:
            raise ExtractionError("Unrecognized audio format", details={"path": str(path)})
        return cls(str(path))

    @classmethod
    def from_url(cls, url, session=None, timeout=30):
        cls.opened.append(("url", url))
        if cls.fail_open:
            raise ExtractionError("Unrecognized audio format", details={"url": url})
        return cls(url)

    def extract_metadata(self, key):
        return self.tags.get(key)

    def get_embedded_picture(self):
        return self.picture


def make_image_bytes(size=(600, 600), color=(200, 30, 30), format="PNG"):
    """Encode a solid color image"""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=format)
    return buffer.getvalue()


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def records():
    return Records


@pytest.fixture
def image_bytes():
    return make_image_bytes()


@pytest.fixture
def database(temp_dir):
    db = Database(temp_dir / "kite_sync.db")
    yield db
    db.close()


@pytest.fixture
def remote():
    return FakeRemoteClient()


@pytest.fixture
def retriever_class():
    """A fresh FakeRetriever subclass so class state never leaks between tests"""
    return type("Retriever", (FakeRetriever,), {"tags": {}, "picture": None, "fail_open": False, "opened": []})


@pytest.fixture
def song_cache(temp_dir):
    return FileLRUCache(temp_dir / "songs", capacity_bytes=10 * 1024 * 1024)


@pytest.fixture
def art_cache(temp_dir):
    cache = AlbumArtCache(temp_dir / "album_art")
    yield cache
    cache.shutdown()


@pytest.fixture
def network():
    return NetworkCostOracle(metered=False)


@pytest.fixture
def service(remote, database, song_cache, art_cache, network, retriever_class):
    sync_service = SyncService(
        remote=remote,
        database=database,
        song_cache=song_cache,
        art_cache=art_cache,
        network=network,
        retriever_class=retriever_class,
    )
    yield sync_service
    sync_service.metadata_sync_queue.close()
    sync_service.metadata_sync_queue.wait_until_idle(timeout=5)


@pytest.fixture
def stored_file(database):
    """Insert a file entry and return it (song not attached)"""
    def _store(path="/Music/Album/01 Song.mp3", rev="r1"):
        parent, name = path.rsplit("/", 1)
        entry = Entry(parent_dir=parent + "/", filename=name, rev=rev, mime_type="audio/mpeg")
        database.upsert_entry(entry)
        return entry
    return _store
