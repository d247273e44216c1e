"""
Test registro progress: transizioni, percent monotono, risultato unico, eviction.
"""
import pytest

from core.progress import ProcessResult, ProcessStatus, ProgressTracker


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _result(handle: str) -> ProcessResult:
    return ProcessResult(
        handle=handle,
        success=True,
        processed_count=1,
        error_count=0,
        total_in_database=1,
        message="ok",
    )


class TestProgressTracker:
    """Test ProgressTracker."""

    def test_start_tracking_pending(self):
        tracker = ProgressTracker()
        state = tracker.start_tracking("h1", total=10)

        assert state.status == ProcessStatus.PENDING
        assert state.total == 10
        assert state.percent == 0
        assert tracker.get("h1").status == ProcessStatus.PENDING

    def test_duplicate_handle_rejected(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1")
        with pytest.raises(ValueError):
            tracker.start_tracking("h1")

    def test_get_unknown_handle(self):
        tracker = ProgressTracker()
        assert tracker.get("missing") is None
        assert tracker.get_result("missing") is None
        assert tracker.update("missing", processed=1) is None

    def test_update_refreshes_timestamp(self):
        tracker = ProgressTracker()
        first = tracker.start_tracking("h1", total=4)
        updated = tracker.update("h1", status=ProcessStatus.PROCESSING, processed=2)

        assert updated.processed == 2
        assert updated.last_update_time >= first.last_update_time

    def test_snapshot_is_a_copy(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1", total=4)
        snapshot = tracker.get("h1")
        snapshot.processed = 99

        assert tracker.get("h1").processed == 0

    def test_percent_never_decreases(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1", total=10)
        tracker.update("h1", status=ProcessStatus.PROCESSING, percent=40)
        state = tracker.update("h1", percent=20)

        assert state.percent == 40
        assert tracker.update("h1", percent=150).percent == 100

    def test_valid_transitions(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1")
        tracker.update("h1", status=ProcessStatus.PROCESSING)
        state = tracker.update("h1", status=ProcessStatus.COMPLETE, percent=100)

        assert state.status == ProcessStatus.COMPLETE
        assert state.is_terminal

    def test_pending_cannot_jump_to_complete(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1")
        with pytest.raises(ValueError):
            tracker.update("h1", status=ProcessStatus.COMPLETE)

    def test_terminal_state_is_frozen(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1")
        tracker.update("h1", status=ProcessStatus.PROCESSING)
        tracker.update("h1", status=ProcessStatus.ERROR, message="boom")

        state = tracker.update("h1", status=ProcessStatus.PROCESSING, message="again")
        assert state.status == ProcessStatus.ERROR
        assert state.message == "boom"

    def test_unknown_field_rejected(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1")
        with pytest.raises(ValueError):
            tracker.update("h1", not_a_field=1)

    def test_result_written_once(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1")
        tracker.set_result("h1", _result("h1"))

        assert tracker.get_result("h1").processed_count == 1
        with pytest.raises(ValueError):
            tracker.set_result("h1", _result("h1"))

    def test_cancel_request(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1")

        assert tracker.request_cancel("h1") is True
        assert tracker.is_cancel_requested("h1")
        assert tracker.request_cancel("missing") is False

        tracker.update("h1", status=ProcessStatus.PROCESSING)
        tracker.update("h1", status=ProcessStatus.CANCELLED)
        assert not tracker.is_cancel_requested("h1")
        assert tracker.request_cancel("h1") is False

    def test_active_count(self):
        tracker = ProgressTracker()
        tracker.start_tracking("h1")
        tracker.start_tracking("h2")
        tracker.update("h2", status=ProcessStatus.PROCESSING)
        tracker.update("h2", status=ProcessStatus.COMPLETE)

        assert tracker.active_count() == 1
        assert len(tracker) == 2


class TestProgressEviction:
    """Test eviction entry terminali (TTL e capacità)."""

    def test_terminal_entries_expire_after_ttl(self):
        clock = FakeClock()
        tracker = ProgressTracker(ttl_seconds=60, clock=clock)
        tracker.start_tracking("done")
        tracker.update("done", status=ProcessStatus.PROCESSING)
        tracker.update("done", status=ProcessStatus.COMPLETE)
        tracker.set_result("done", _result("done"))
        tracker.start_tracking("running")

        clock.now = 30
        assert tracker.get_result("done") is not None

        clock.now = 61
        assert tracker.get("done") is None
        assert tracker.get_result("done") is None
        assert tracker.get("running") is not None

    def test_capacity_drops_oldest_terminal(self):
        clock = FakeClock()
        tracker = ProgressTracker(ttl_seconds=0, max_entries=2, clock=clock)
        for index, handle in enumerate(("a", "b")):
            clock.now = index
            tracker.start_tracking(handle)
            tracker.update(handle, status=ProcessStatus.PROCESSING)
            tracker.update(handle, status=ProcessStatus.COMPLETE)

        tracker.start_tracking("c")

        assert "a" not in tracker
        assert "b" in tracker
        assert "c" in tracker

    def test_capacity_never_drops_active_runs(self):
        tracker = ProgressTracker(ttl_seconds=0, max_entries=1)
        tracker.start_tracking("a")
        tracker.start_tracking("b")

        assert "a" in tracker
        assert "b" in tracker
