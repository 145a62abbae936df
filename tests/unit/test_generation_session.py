"""Tests for GenerationSession progress tracking."""
from trackgen.tracks.session import COMPLETED, FAILED, PENDING, PROCESSING, GenerationSession


class TestLifecycle:
    def test_create_session(self, cache):
        session = GenerationSession.create_for_user(cache, 7, {"mode": "bulk"})
        data = session.get_session_data()
        assert data["status"] == PENDING
        assert data["total_chunks"] == 0
        assert data["completed_chunks"] == 0
        assert data["tracks_created"] == 0
        assert data["metadata"] == {"mode": "bulk"}
        assert session.cache_key == f"track_generation:user:7:session:{session.session_id}"

    def test_mark_started(self, cache):
        session = GenerationSession.create_for_user(cache, 1)
        session.mark_started(4)
        data = session.get_session_data()
        assert data["status"] == PROCESSING
        assert data["total_chunks"] == 4

    def test_mark_completed_merges_metadata(self, cache):
        session = GenerationSession.create_for_user(cache, 1, {"mode": "daily"})
        session.mark_completed(duplicates_removed=2)
        data = session.get_session_data()
        assert data["status"] == COMPLETED
        assert data["completed_at"] is not None
        assert data["metadata"] == {"mode": "daily", "duplicates_removed": 2}

    def test_mark_failed(self, cache):
        session = GenerationSession.create_for_user(cache, 1)
        session.mark_failed("boom")
        data = session.get_session_data()
        assert data["status"] == FAILED
        assert data["error_message"] == "boom"

    def test_cleanup_session(self, cache):
        session = GenerationSession.create_for_user(cache, 1)
        session.increment_completed_chunks()
        session.cleanup_session()
        assert not session.session_exists()
        assert cache.counter(session.cache_key + ":completed_chunks") == 0

    def test_expires_with_ttl(self, cache, clock):
        session = GenerationSession.create_for_user(cache, 1, ttl=60)
        clock.advance(61)
        assert not session.session_exists()
        assert session.get_session_data() is None
        assert session.update_session(status=COMPLETED) is False


class TestCounters:
    def test_increments(self, cache):
        session = GenerationSession.create_for_user(cache, 1)
        session.mark_started(3)
        session.increment_completed_chunks()
        session.increment_completed_chunks()
        session.increment_tracks_created(5)
        data = session.get_session_data()
        assert data["completed_chunks"] == 2
        assert data["tracks_created"] == 5

    def test_increment_without_session_is_skipped(self, cache):
        session = GenerationSession(cache, 1, "missing")
        assert session.increment_completed_chunks() is False
        assert session.increment_tracks_created(2) is False

    def test_status_update_keeps_counters(self, cache):
        session = GenerationSession.create_for_user(cache, 1)
        session.mark_started(2)
        session.increment_completed_chunks()
        session.mark_completed()
        assert session.get_session_data()["completed_chunks"] == 1


class TestProgress:
    def test_percentage(self, cache):
        session = GenerationSession.create_for_user(cache, 1)
        session.mark_started(3)
        session.increment_completed_chunks()
        assert session.progress_percentage() == 33.33
        assert not session.all_chunks_completed()

    def test_zero_total_is_complete(self, cache):
        session = GenerationSession.create_for_user(cache, 1)
        assert session.progress_percentage() == 100

    def test_all_chunks_completed(self, cache):
        session = GenerationSession.create_for_user(cache, 1)
        session.mark_started(2)
        session.increment_completed_chunks()
        session.increment_completed_chunks()
        assert session.all_chunks_completed()
        assert session.progress()["progress_percentage"] == 100

    def test_progress_report(self, cache):
        session = GenerationSession.create_for_user(cache, 1)
        session.mark_started(4)
        session.increment_completed_chunks()
        session.increment_tracks_created(3)
        assert session.progress() == {
            "session_id": session.session_id,
            "status": PROCESSING,
            "completed_chunks": 1,
            "total_chunks": 4,
            "tracks_created": 3,
            "progress_percentage": 25.0,
            "error_message": None,
        }


class TestLookup:
    def test_find_session(self, cache):
        created = GenerationSession.create_for_user(cache, 3)
        found = GenerationSession.find_session(cache, 3, created.session_id)
        assert found is not None
        assert found.session_id == created.session_id

    def test_find_session_other_user(self, cache):
        created = GenerationSession.create_for_user(cache, 3)
        assert GenerationSession.find_session(cache, 4, created.session_id) is None
