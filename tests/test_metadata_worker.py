"""Tests for the metadata sync worker"""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from kite_sync.cache.naming import make_album_art_signature, make_cache_file_name
from kite_sync.core.exceptions import RemoteServiceError
from kite_sync.library.models import AsyncCacheRequest, CacheFlags, Song
from kite_sync.metadata.retriever import MetadataKey

TEXT = CacheFlags.METADATA_TEXT
IMAGE = CacheFlags.METADATA_IMAGE
PLAY = CacheFlags.SONG_PLAYABLE

FULL_TAGS = {
    MetadataKey.ALBUM: "Album",
    MetadataKey.ARTIST: "Artist",
    MetadataKey.GENRE: "Rock",
    MetadataKey.TITLE: "Title",
    MetadataKey.DURATION: "215000",
    MetadataKey.CD_TRACK_NUMBER: "3",
    MetadataKey.NUM_TRACKS: "12",
}


@pytest.fixture
def song_entry(stored_file, remote):
    entry = stored_file("/Music/Album/03 Title.mp3")
    entry.song = Song(entry_id=entry.id)
    remote.files["/music/album/03 title.mp3"] = b"ID3 fake audio"
    return entry


class TestTextMetadata:
    """Test text tag extraction"""

    def test_all_fields_extracted(self, service, database, retriever_class, song_entry):
        """Test a complete extraction from a downloaded file"""
        retriever_class.tags = dict(FULL_TAGS)

        service.synchronize_song(AsyncCacheRequest(song_entry, TEXT))

        song = database.find_song_by_entry_id(song_entry.id)
        assert song.album == "Album"
        assert song.artist == "Artist"
        assert song.genre == "Rock"
        assert song.title == "Title"
        assert song.duration == 215000
        assert song.track_number == 3
        assert song.total_tracks == 12
        assert song.has_latest_metadata is True
        assert retriever_class.opened[0][0] == "file"

    def test_partial_numeric_metadata(self, service, database, retriever_class, song_entry, caplog):
        """Test that a bad numeric field is skipped and the rest still saved"""
        retriever_class.tags = {
            MetadataKey.TITLE: "Title",
            MetadataKey.DURATION: "abc",
            MetadataKey.CD_TRACK_NUMBER: "3",
        }

        with caplog.at_level(logging.WARNING):
            service.synchronize_song(AsyncCacheRequest(song_entry, TEXT))

        song = database.find_song_by_entry_id(song_entry.id)
        assert song.title == "Title"
        assert song.duration is None
        assert song.track_number == 3
        assert song.total_tracks is None
        assert song.has_latest_metadata is True
        assert any("duration" in record.getMessage() for record in caplog.records)

    def test_metered_network_streams_from_url(self, service, network, database, remote, retriever_class, song_entry):
        """Test that a valid URL is used instead of downloading on a metered network"""
        network.set_metered(True)
        retriever_class.tags = {MetadataKey.TITLE: "Streamed"}
        song_entry.song.download_url = "https://dl.example.com/song"
        song_entry.song.download_url_expiration = datetime.now(timezone.utc) + timedelta(hours=1)

        service.synchronize_song(AsyncCacheRequest(song_entry, TEXT))

        assert remote.download_calls == []
        assert retriever_class.opened == [("url", "https://dl.example.com/song")]
        assert database.find_song_by_entry_id(song_entry.id).title == "Streamed"

    def test_no_source_means_no_write(self, service, network, database, remote, retriever_class, song_entry):
        """Test metered network, no URL and no file"""
        network.set_metered(True)

        service.synchronize_song(AsyncCacheRequest(song_entry, TEXT))

        assert retriever_class.opened == []
        assert remote.download_calls == []
        assert database.find_song_by_entry_id(song_entry.id) is None

    def test_unreadable_file_leaves_song_stale(self, service, database, retriever_class, song_entry):
        """Test a retriever that cannot open the file"""
        retriever_class.fail_open = True

        service.synchronize_song(AsyncCacheRequest(song_entry, TEXT))

        assert song_entry.song.has_latest_metadata is False
        assert database.find_song_by_entry_id(song_entry.id) is None

    def test_current_metadata_not_reextracted(self, service, song_cache, retriever_class, image_bytes, song_entry):
        """Test that an artwork-only pass keeps existing text tags"""
        song_entry.song.title = "Old"
        song_entry.song.has_latest_metadata = True
        retriever_class.tags = {MetadataKey.TITLE: "New"}
        retriever_class.picture = image_bytes
        song_cache.new_file(make_cache_file_name(song_entry), lambda sink: sink.write(b"audio"))

        service.synchronize_song(AsyncCacheRequest(song_entry, TEXT | IMAGE))

        assert song_entry.song.title == "Old"
        assert retriever_class.opened[0][0] == "file"

    def test_current_metadata_without_file_opens_nothing(self, service, remote, retriever_class, song_entry):
        """Test that artwork is not fetched over the network for up-to-date songs"""
        song_entry.song.has_latest_metadata = True

        service.synchronize_song(AsyncCacheRequest(song_entry, IMAGE))

        assert retriever_class.opened == []
        assert remote.download_calls == []


class TestConsistency:
    """Test request validation"""

    def test_missing_song_is_ignored(self, service, database, remote, song_entry):
        """Test a request whose entry has no song"""
        song_entry.song = None

        service.synchronize_song(AsyncCacheRequest(song_entry, TEXT | PLAY))

        assert remote.download_calls == []
        assert remote.link_calls == []
        assert database.find_song_by_entry_id(song_entry.id) is None

    def test_mismatching_entry_id_is_ignored(self, service, database, remote, song_entry):
        """Test a request whose song belongs to another entry"""
        song_entry.song = Song(entry_id=song_entry.id + 1000)

        service.synchronize_song(AsyncCacheRequest(song_entry, TEXT | PLAY))

        assert remote.download_calls == []
        assert database.find_song_by_entry_id(song_entry.id) is None


class TestDownloadUrl:
    """Test URL refresh by the worker"""

    def test_url_refreshed_when_not_cached(self, service, network, database, remote, song_entry):
        """Test that a playable song gets a URL when the file stays remote"""
        network.set_metered(True)
        song_entry.song.has_latest_metadata = True

        service.synchronize_song(AsyncCacheRequest(song_entry, PLAY))

        song = database.find_song_by_entry_id(song_entry.id)
        assert remote.link_calls == ["/Music/Album/03 Title.mp3"]
        assert song.download_url == "https://dl.example.com/Music/Album/03 Title.mp3"
        assert song.has_valid_download_url()

    def test_url_not_refreshed_when_cached(self, service, remote, song_entry):
        """Test that a cached file needs no URL"""
        song_entry.song.has_latest_metadata = True

        service.synchronize_song(AsyncCacheRequest(song_entry, PLAY))

        assert len(remote.download_calls) == 1
        assert remote.link_calls == []

    def test_refresh_failure_clears_url(self, service, network, database, remote, song_entry):
        """Test that a failed refresh drops the stale URL"""
        network.set_metered(True)
        remote.link_error = RemoteServiceError("HTTP 500")
        song_entry.song.has_latest_metadata = True
        song_entry.song.download_url = "https://dl.example.com/old"
        song_entry.song.download_url_expiration = datetime.now(timezone.utc) - timedelta(minutes=1)

        service.synchronize_song(AsyncCacheRequest(song_entry, PLAY))

        song = database.find_song_by_entry_id(song_entry.id)
        assert song.download_url is None
        assert song.download_url_expiration is None

    def test_malformed_url_clears_url(self, service, network, database, remote, song_entry):
        """Test a link that is not an http(s) URL"""
        network.set_metered(True)
        remote.link_url = "ftp://files.example.com/song"
        song_entry.song.has_latest_metadata = True

        service.synchronize_song(AsyncCacheRequest(song_entry, PLAY))

        assert database.find_song_by_entry_id(song_entry.id).download_url is None


class TestArtwork:
    """Test album art caching by the worker"""

    def test_artwork_cached(self, service, art_cache, database, retriever_class, image_bytes, song_entry):
        """Test that embedded artwork is stored as a thumbnail"""
        retriever_class.picture = image_bytes

        service.synchronize_song(AsyncCacheRequest(song_entry, TEXT | IMAGE))

        assert art_cache.get(make_album_art_signature(song_entry)) is not None
        assert database.find_song_by_entry_id(song_entry.id).has_valid_album_art is True

    def test_missing_artwork_marks_song(self, service, database, retriever_class, song_entry):
        """Test a file without embedded picture"""
        retriever_class.tags = {MetadataKey.TITLE: "Title"}

        service.synchronize_song(AsyncCacheRequest(song_entry, TEXT | IMAGE))

        assert database.find_song_by_entry_id(song_entry.id).has_valid_album_art is False

    def test_broken_artwork_marks_song(self, service, art_cache, database, retriever_class, song_entry, caplog):
        """Test a picture that cannot be decoded"""
        retriever_class.picture = b"definitely not an image"

        with caplog.at_level(logging.WARNING):
            service.synchronize_song(AsyncCacheRequest(song_entry, TEXT | IMAGE))

        assert database.find_song_by_entry_id(song_entry.id).has_valid_album_art is False
        assert art_cache.get(make_album_art_signature(song_entry)) is None
        assert any("artwork" in record.getMessage() for record in caplog.records)


class TestSingleWrite:
    """Test that a request writes its song at most once"""

    def test_song_upserted_once(self, service, database, retriever_class, image_bytes, song_entry):
        """Test one write for text, artwork and playback together"""
        retriever_class.tags = dict(FULL_TAGS)
        retriever_class.picture = image_bytes

        with patch.object(database, "upsert_song", wraps=database.upsert_song) as upsert:
            service.synchronize_song(AsyncCacheRequest(song_entry, TEXT | IMAGE | PLAY))

        assert upsert.call_count == 1

    def test_nothing_to_do_writes_nothing(self, service, database, song_entry):
        """Test an up-to-date song with only text requested"""
        song_entry.song.has_latest_metadata = True

        with patch.object(database, "upsert_song", wraps=database.upsert_song) as upsert:
            service.synchronize_song(AsyncCacheRequest(song_entry, TEXT))

        assert upsert.call_count == 0
