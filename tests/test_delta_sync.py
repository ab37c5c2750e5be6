"""Tests for the delta sync loop"""

import pytest

from kite_sync.core.exceptions import RemoteServiceError
from kite_sync.library.models import Song


class TestDeltaSync:
    """Test synchronize_entry_db()"""

    def test_nothing_happens_until_consumed(self, service, remote, records):
        """Test that the sync is lazy"""
        remote.pages[None] = records.page(records.file("/a.mp3"), cursor="c1")

        run = service.synchronize_entry_db()

        assert remote.delta_calls == []
        assert len(list(run)) == 1

    def test_full_sync_yields_ids_in_remote_order(self, service, remote, database, records):
        """Test first run listing over several pages"""
        remote.pages[None] = records.page(
            records.folder("/Music"),
            records.file("/Music/b.mp3"),
            cursor="c1",
            has_more=True,
        )
        remote.pages["c1"] = records.page(records.file("/Music/a.mp3"), cursor="c2")

        ids = list(service.synchronize_entry_db())

        paths = [database.find_entry_by_id(entry_id).full_path for entry_id in ids]
        assert paths == ["/Music", "/Music/b.mp3", "/Music/a.mp3"]
        assert database.get_delta_cursor() == "c2"
        assert remote.delta_calls == [None, "c1"]

    def test_second_run_is_idempotent(self, service, remote, database, records):
        """Test that a run with no remote changes mutates nothing"""
        remote.pages[None] = records.page(records.file("/a.mp3"), records.file("/b.mp3"), cursor="c1")
        list(service.synchronize_entry_db())
        before = [(e.id, e.full_path, e.rev) for e in database.list_files_under("/")]

        assert list(service.synchronize_entry_db()) == []

        after = [(e.id, e.full_path, e.rev) for e in database.list_files_under("/")]
        assert after == before
        assert remote.delta_calls == [None, "c1"]

    def test_empty_page_still_advances_cursor(self, service, remote, database, records):
        """Test cursor persistence for a page without records"""
        remote.pages[None] = records.page(cursor="c1", has_more=True)
        remote.pages["c1"] = records.page(cursor="c2")

        list(service.synchronize_entry_db())

        assert database.get_delta_cursor() == "c2"

    def test_deletion_removes_subtree(self, service, remote, database, records):
        """Test that deleting a directory removes all its descendants"""
        remote.pages[None] = records.page(
            records.folder("/Music"),
            records.folder("/Music/Album"),
            records.file("/Music/Album/01.mp3"),
            records.file("/Music/Album/02.mp3"),
            records.file("/Music/Albums.txt"),
            records.file("/Other.mp3"),
            cursor="c1",
        )
        list(service.synchronize_entry_db())
        remote.pages["c1"] = records.page(records.deleted("/music/ALBUM"), cursor="c2")

        assert list(service.synchronize_entry_db()) == []

        remaining = sorted(e.full_path for e in database.list_files_under("/"))
        assert remaining == ["/Music/Albums.txt", "/Other.mp3"]
        assert database.find_entry_by_path("/Music/Album") is None
        assert database.find_entry_by_path("/Music") is not None

    def test_deletion_of_unknown_path_is_harmless(self, service, remote, database, records):
        """Test deleting a path that was never stored"""
        remote.pages[None] = records.page(records.deleted("/ghost"), records.file("/a.mp3"), cursor="c1")

        ids = list(service.synchronize_entry_db())

        assert len(ids) == 1
        assert database.count_entries() == 1

    def test_update_overwrites_entry_and_keeps_id(self, service, remote, database, records):
        """Test that a changed record fully overwrites the stored entry"""
        remote.pages[None] = records.page(records.file("/Music/Song.mp3", rev="r1"), cursor="c1")
        [first_id] = service.synchronize_entry_db()
        remote.pages["c1"] = records.page(records.file("/music/SONG.mp3", rev="r2"), cursor="c2")

        [second_id] = service.synchronize_entry_db()

        entry = database.find_entry_by_id(second_id)
        assert second_id == first_id
        assert entry.rev == "r2"
        assert entry.filename == "SONG.mp3"
        assert database.count_entries() == 1

    def test_revision_change_drops_song(self, service, remote, database, records):
        """Test that new content invalidates extracted metadata"""
        remote.pages[None] = records.page(records.file("/a.mp3", rev="r1"), cursor="c1")
        [entry_id] = service.synchronize_entry_db()
        database.upsert_song(Song(entry_id=entry_id, title="Old", has_latest_metadata=True))
        remote.pages["c1"] = records.page(records.file("/a.mp3", rev="r2"), cursor="c2")

        list(service.synchronize_entry_db())

        assert database.find_song_by_entry_id(entry_id) is None

    def test_reset_page_clears_entries(self, service, remote, database, records):
        """Test that a reset page replaces the local mirror"""
        remote.pages[None] = records.page(records.file("/old.mp3"), cursor="c1")
        list(service.synchronize_entry_db())
        remote.pages["c1"] = records.page(records.file("/new.mp3"), cursor="c2", reset=True)

        list(service.synchronize_entry_db())

        assert [e.full_path for e in database.list_files_under("/")] == ["/new.mp3"]

    def test_failure_keeps_cursor_of_last_complete_page(self, service, remote, database, records):
        """Test cursor durability when a later page fails"""
        remote.pages[None] = records.page(records.file("/1.mp3"), cursor="c1", has_more=True)
        remote.pages["c1"] = records.page(records.file("/2.mp3"), cursor="c2", has_more=True)
        remote.pages["c2"] = RemoteServiceError("HTTP 500", details={"status_code": 500})

        run = service.synchronize_entry_db()
        yielded = []
        with pytest.raises(RemoteServiceError):
            for entry_id in run:
                yielded.append(entry_id)

        assert len(yielded) == 2
        assert database.get_delta_cursor() == "c2"

        # The retried run resumes from page 3
        remote.pages["c2"] = records.page(records.file("/3.mp3"), cursor="c3")
        assert len(list(service.synchronize_entry_db())) == 1
        assert remote.delta_calls[-1] == "c2"
        assert database.count_entries() == 3

    def test_entry_built_from_remote_metadata(self, service, remote, database, records):
        """Test field mapping from remote metadata"""
        remote.pages[None] = records.page(records.file("/Music/Track.flac", rev="abc"), cursor="c1")

        [entry_id] = service.synchronize_entry_db()

        entry = database.find_entry_by_id(entry_id)
        assert entry.parent_dir == "/Music/"
        assert entry.filename == "Track.flac"
        assert entry.rev == "abc"
        assert entry.root == "dropbox"
        assert entry.is_dir is False
