"""Tests for unavailable-report accounting."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from vidblock.availability import AvailabilityTracker
from vidblock.errors import BackendUnavailableError
from vidblock.models import AvailabilityRecord, SuppressionState, Video

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class DateClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def date_clock():
    return DateClock()


@pytest.mark.unit
def test_first_report_sets_count_to_one(date_clock):
    tracker = AvailabilityTracker(threshold=50, reset_days=30, clock=date_clock)
    record = tracker.record_failure("vid")
    assert record.count == 1
    assert record.last_reported_at == START
    assert record.state == SuppressionState.OK


@pytest.mark.unit
def test_report_within_window_increments(date_clock):
    tracker = AvailabilityTracker(threshold=50, reset_days=30, clock=date_clock)
    tracker.record_failure("vid")
    date_clock.advance(days=10)
    record = tracker.record_failure("vid")
    assert record.count == 2
    assert record.last_reported_at == START + timedelta(days=10)


@pytest.mark.unit
def test_report_after_window_resets_count(date_clock):
    tracker = AvailabilityTracker(threshold=50, reset_days=30, clock=date_clock)
    for _ in range(5):
        tracker.record_failure("vid")
    date_clock.advance(days=31)
    assert tracker.record_failure("vid").count == 1


@pytest.mark.unit
def test_threshold_suppresses_exactly_once(date_clock):
    tracker = AvailabilityTracker(threshold=3, reset_days=30, clock=date_clock)
    tracker.record_failure("vid", "150")
    tracker.record_failure("vid", "150")
    assert not tracker.is_suppressed("vid")

    record = tracker.record_failure("vid", "150")
    assert record.state == SuppressionState.SUPPRESSED
    assert record.reason == "Auto-flagged: 3 unavailable reports (Error: 150)"
    assert tracker.is_suppressed("vid")

    record = tracker.record_failure("vid", "101")
    assert record.count == 4
    assert record.reason == "Auto-flagged: 3 unavailable reports (Error: 150)"


@pytest.mark.unit
def test_reason_without_error_code(date_clock):
    tracker = AvailabilityTracker(threshold=1, reset_days=30, clock=date_clock)
    assert tracker.record_failure("vid").reason == "Auto-flagged: 1 unavailable reports"


@pytest.mark.unit
def test_records_are_per_video(date_clock):
    tracker = AvailabilityTracker(threshold=50, reset_days=30, clock=date_clock)
    tracker.record_failure("a")
    tracker.record_failure("a")
    tracker.record_failure("b")
    assert tracker.get("a").count == 2
    assert tracker.get("b").count == 1
    assert tracker.get("c") is None


@pytest.mark.unit
def test_store_record_is_loaded_and_saved(date_clock):
    store = MagicMock()
    # Naive timestamps from the store are treated as UTC
    store.get_availability.return_value = AvailabilityRecord(
        video_id="vid", count=7, last_reported_at=datetime(2023, 12, 25)
    )
    tracker = AvailabilityTracker(store=store, threshold=50, reset_days=30, clock=date_clock)

    record = tracker.record_failure("vid")

    assert record.count == 8
    store.save_availability.assert_called_once_with(record)


@pytest.mark.unit
def test_store_is_read_outside_the_tracker_lock(date_clock):
    store = MagicMock()
    tracker = AvailabilityTracker(store=store, threshold=50, reset_days=30, clock=date_clock)

    def _get_availability(video_id):
        assert not tracker._lock.locked()
        return None

    store.get_availability.side_effect = _get_availability

    assert tracker.record_failure("vid").count == 1
    assert tracker.record_failure("vid").count == 2
    store.get_availability.assert_called_once_with("vid")


@pytest.mark.unit
def test_report_swallows_store_errors(date_clock, caplog):
    store = MagicMock()
    store.get_availability.return_value = None
    store.save_availability.side_effect = BackendUnavailableError("db down")
    tracker = AvailabilityTracker(store=store, threshold=50, reset_days=30, clock=date_clock)

    with caplog.at_level("ERROR"):
        tracker.report("vid", "150")

    assert "db down" in caplog.text


@pytest.mark.unit
def test_filter_items_removes_suppressed(date_clock):
    tracker = AvailabilityTracker(threshold=1, reset_days=30, clock=date_clock)
    tracker.record_failure("bad")
    items = [Video(id="good", title="Good"), Video(id="bad", title="Bad")]
    assert [v.id for v in tracker.filter_items(items)] == ["good"]
    assert [v.id for v in tracker.filter_items(items)] == ["good"]


@pytest.mark.unit
def test_load_suppressed_from_store():
    store = MagicMock()
    store.suppressed_video_ids.return_value = ["x", "y"]
    tracker = AvailabilityTracker(store=store, threshold=50, reset_days=30)

    assert tracker.load_suppressed_from_store() == 2
    assert tracker.suppressed_ids() == {"x", "y"}
    assert AvailabilityTracker(threshold=50, reset_days=30).load_suppressed_from_store() == 0
