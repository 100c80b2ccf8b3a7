"""
Per-video failure accounting with automatic suppression.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set

from . import settings
from .errors import VidblockError
from .models import AvailabilityRecord, SuppressionState, Video

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps from the store are UTC wall time.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class AvailabilityTracker:
    """
    Counts "unavailable" reports per video inside a rolling reset window and
    suppresses a video once the count reaches ``threshold``.

    Records live in memory and, when a store is configured, are read from and
    written back to it. Suppressed ids are remembered so block composition
    can filter them on either backend.
    """

    def __init__(
        self,
        store=None,
        threshold: Optional[int] = None,
        reset_days: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.threshold = threshold if threshold is not None else settings.suppression_threshold()
        self.reset_window = timedelta(
            days=reset_days if reset_days is not None else settings.suppression_reset_days()
        )
        self._clock = clock
        self._records: Dict[str, AvailabilityRecord] = {}
        self._suppressed: Set[str] = set()
        self._lock = threading.Lock()

    def _load_stored(self, video_id: str) -> Optional[AvailabilityRecord]:
        # Runs outside the lock so reports for other videos are not held up
        if self.store is None or video_id in self._records:
            return None
        stored = self.store.get_availability(video_id)
        if stored is not None:
            stored.last_reported_at = _as_utc(stored.last_reported_at)
        return stored

    def record_failure(self, video_id: str, error_code: Optional[str] = None) -> AvailabilityRecord:
        """
        Apply one failure report and return the updated record.

        Store errors propagate; use ``report`` from request paths.
        """
        stored = self._load_stored(video_id)
        now = self._clock()
        with self._lock:
            record = self._records.get(video_id) or stored or AvailabilityRecord(video_id=video_id)
            last = _as_utc(record.last_reported_at)

            if last is None or now - last > self.reset_window:
                record.count = 1
            else:
                record.count += 1
            record.last_reported_at = now

            if record.count >= self.threshold and record.state != SuppressionState.SUPPRESSED:
                record.state = SuppressionState.SUPPRESSED
                record.reason = f"Auto-flagged: {record.count} unavailable reports"
                if error_code:
                    record.reason += f" (Error: {error_code})"
                self._suppressed.add(video_id)
                LOGGER.warning("Video %s suppressed: %s", video_id, record.reason)

            self._records[video_id] = record

        if self.store is not None:
            self.store.save_availability(record)
        return record

    def report(self, video_id: str, error_code: Optional[str] = None) -> None:
        """Fire-and-forget variant of ``record_failure``; never raises."""
        try:
            record = self.record_failure(video_id, error_code)
        except VidblockError as exc:
            LOGGER.error("Failed to record unavailable report for %s: %s", video_id, exc)
            return
        except Exception:
            LOGGER.exception("Unexpected error recording unavailable report for %s", video_id)
            return
        LOGGER.info(
            "Video %s marked unavailable (count: %d, error: %s)",
            video_id, record.count, error_code or "none",
        )

    def get(self, video_id: str) -> Optional[AvailabilityRecord]:
        return self._records.get(video_id)

    def is_suppressed(self, video_id: str) -> bool:
        return video_id in self._suppressed

    def suppressed_ids(self) -> Set[str]:
        return set(self._suppressed)

    def mark_suppressed(self, video_ids: Iterable[str]) -> None:
        with self._lock:
            self._suppressed.update(video_ids)

    def load_suppressed_from_store(self) -> int:
        """Pull already-flagged ids from the store. Returns how many were loaded."""
        if self.store is None:
            return 0
        ids = self.store.suppressed_video_ids()
        self.mark_suppressed(ids)
        LOGGER.info("Loaded %d suppressed video id(s) from store", len(ids))
        return len(ids)

    def filter_items(self, items: Iterable[Video]) -> List[Video]:
        suppressed = self._suppressed
        if not suppressed:
            return list(items)
        return [item for item in items if item.id not in suppressed]
