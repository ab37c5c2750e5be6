"""Tests for the remote storage client"""

import io
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, Mock

import pytest
import requests

from kite_sync.core.config import RemoteConfig
from kite_sync.core.exceptions import RemoteServiceError
from kite_sync.remote.client import RemoteStorageClient


def response(status_code=200, body=None, chunks=None):
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = body if body is not None else {}
    mock.iter_content.return_value = chunks or []
    mock.__enter__.return_value = mock
    return mock


@pytest.fixture
def session():
    mock = Mock()
    mock.headers = {}
    return mock


@pytest.fixture
def client(session):
    config = RemoteConfig(
        access_token="secret",
        api_url="https://api.example.com/2",
        content_url="https://content.example.com/2",
        root="dropbox",
        timeout=10,
    )
    return RemoteStorageClient(config, session=session)


LISTING = {
    "entries": [
        {".tag": "folder", "path_display": "/Music", "path_lower": "/music"},
        {
            ".tag": "file",
            "path_display": "/Music/Song.mp3",
            "path_lower": "/music/song.mp3",
            "rev": "015",
            "content_hash": "abc",
            "server_modified": "2015-05-12T15:50:38Z",
            "size": 7212,
        },
        {".tag": "deleted", "path_display": "/Old", "path_lower": "/old"},
    ],
    "cursor": "c1",
    "has_more": True,
}


class TestRemoteStorageClient:
    """Test RemoteStorageClient against a mocked session"""

    def test_auth_header(self, client, session):
        """Test the bearer token"""
        assert session.headers["Authorization"] == "Bearer secret"

    def test_first_listing(self, client, session):
        """Test a listing without cursor"""
        session.post.return_value = response(body=LISTING)

        page = client.fetch_delta_page(None)

        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert url == "https://api.example.com/2/files/list_folder"
        assert payload == {"path": "", "recursive": True, "include_deleted": True}
        assert page.reset is True
        assert page.cursor == "c1"
        assert page.has_more is True

        folder, song, deleted = page.entries
        assert folder.metadata.is_dir
        assert folder.metadata.icon == "folder"
        assert song.lc_path == "/music/song.mp3"
        assert song.metadata.rev == "015"
        assert song.metadata.mime_type == "audio/mpeg"
        assert song.metadata.modified == datetime(2015, 5, 12, 15, 50, 38, tzinfo=timezone.utc)
        assert deleted.is_deletion

    def test_continue_with_cursor(self, client, session):
        """Test an incremental listing"""
        session.post.return_value = response(body={"entries": [], "cursor": "c2", "has_more": False})

        page = client.fetch_delta_page("c1")

        assert session.post.call_args.args[0].endswith("/files/list_folder/continue")
        assert session.post.call_args.kwargs["json"] == {"cursor": "c1"}
        assert page.reset is False
        assert page.entries == ()

    def test_expired_cursor_restarts_listing(self, client, session):
        """Test the reset error of the continue endpoint"""
        session.post.side_effect = [
            response(status_code=409, body={"error_summary": "reset/.."}),
            response(body=LISTING),
        ]

        page = client.fetch_delta_page("stale")

        assert page.reset is True
        assert session.post.call_args.args[0].endswith("/files/list_folder")

    def test_other_conflict_is_raised(self, client, session):
        """Test that non-reset errors propagate"""
        session.post.return_value = response(status_code=409, body={"error_summary": "path/not_found/"})

        with pytest.raises(RemoteServiceError):
            client.fetch_delta_page("c1")

    def test_auth_and_rate_limit_flags(self, client, session):
        """Test error classification"""
        session.post.return_value = response(status_code=401)
        with pytest.raises(RemoteServiceError) as auth:
            client.fetch_delta_page(None)
        assert auth.value.is_auth_error

        session.post.return_value = response(status_code=429)
        with pytest.raises(RemoteServiceError) as limited:
            client.fetch_delta_page(None)
        assert limited.value.is_rate_limit

    def test_transport_error(self, client, session):
        """Test that requests exceptions are wrapped"""
        session.post.side_effect = requests.ConnectionError("down")

        with pytest.raises(RemoteServiceError):
            client.generate_temporary_link("/a.mp3")

    def test_temporary_link(self, client, session):
        """Test link generation"""
        session.post.return_value = response(body={"link": "https://dl.example.com/a"})

        link = client.generate_temporary_link("/a.mp3")

        assert link.url == "https://dl.example.com/a"
        remaining = link.expires - datetime.now(timezone.utc)
        assert timedelta(hours=3, minutes=59) < remaining <= timedelta(hours=4)

    def test_download_streams_revision(self, client, session):
        """Test file download into a sink"""
        session.post.return_value = response(chunks=[b"abc", b"", b"def"])
        sink = io.BytesIO()

        written = client.download_file("/a.mp3", "015", sink)

        assert written == 6
        assert sink.getvalue() == b"abcdef"
        headers = session.post.call_args.kwargs["headers"]
        assert json.loads(headers["Dropbox-API-Arg"]) == {"path": "rev:015"}
        assert session.post.call_args.args[0] == "https://content.example.com/2/files/download"
