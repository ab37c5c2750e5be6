"""Tests for the cache materialization policy"""

import pytest

from kite_sync.cache.naming import make_cache_file_name
from kite_sync.library.models import CacheFlags, Song

TEXT = CacheFlags.METADATA_TEXT
IMAGE = CacheFlags.METADATA_IMAGE
PLAY = CacheFlags.SONG_PLAYABLE


@pytest.fixture
def song_entry(stored_file, remote):
    entry = stored_file("/Music/song.mp3")
    entry.song = Song(entry_id=entry.id)
    remote.files["/music/song.mp3"] = b"ID3 fake audio"
    return entry


class TestCachePolicy:
    """Test get_cached_song_file() download decisions"""

    @pytest.mark.parametrize("metered, has_latest, flags, expect_download", [
        # Cheap network: download when tags are needed or the song will be played
        (False, False, TEXT, True),
        (False, False, PLAY, True),
        (False, False, TEXT | PLAY, True),
        (False, True, TEXT, False),
        (False, True, PLAY, True),
        (False, False, IMAGE, False),
        (False, False, CacheFlags.NONE, False),
        # Metered network: only when both are true
        (True, False, TEXT, False),
        (True, False, PLAY, False),
        (True, False, TEXT | PLAY, True),
        (True, True, TEXT | PLAY, False),
        (True, False, IMAGE | PLAY, False),
        (True, False, TEXT | IMAGE | PLAY, True),
    ])
    def test_download_decision(self, service, network, remote, song_entry, metered, has_latest, flags, expect_download):
        """Test the network cost truth table"""
        network.set_metered(metered)
        song_entry.song.has_latest_metadata = has_latest

        path = service.get_cached_song_file(song_entry, 0, flags)

        assert (len(remote.download_calls) == 1) == expect_download
        assert (path is not None) == expect_download

    def test_probe_without_flags_never_downloads(self, service, remote, song_entry):
        """Test that no flags means a pure cache lookup"""
        assert service.get_cached_song_file(song_entry) is None
        assert remote.download_calls == []

    def test_cached_file_is_returned_without_download(self, service, remote, song_cache, song_entry):
        """Test cache hits"""
        key = make_cache_file_name(song_entry)
        song_cache.new_file(key, lambda sink: sink.write(b"cached"))

        path = service.get_cached_song_file(song_entry, 0, TEXT | PLAY)

        assert path.read_bytes() == b"cached"
        assert remote.download_calls == []

    def test_download_writes_revision_into_cache(self, service, remote, song_cache, song_entry):
        """Test that the downloaded file lands under the entry's cache key"""
        path = service.get_cached_song_file(song_entry, 0, PLAY)

        assert path.read_bytes() == b"ID3 fake audio"
        assert make_cache_file_name(song_entry) in song_cache
        assert remote.download_calls == [("/Music/song.mp3", "r1")]

    def test_download_failure_yields_none(self, service, remote, song_cache, song_entry):
        """Test that a failed download leaves nothing behind"""
        del remote.files["/music/song.mp3"]

        assert service.get_cached_song_file(song_entry, 0, PLAY) is None
        assert make_cache_file_name(song_entry) not in song_cache
        assert song_cache.size == 0

    def test_missing_song_counts_as_stale(self, service, remote, stored_file):
        """Test an entry without an attached song"""
        entry = stored_file("/x.mp3")
        remote.files["/x.mp3"] = b"data"

        assert service.get_cached_song_file(entry, 0, TEXT) is not None
