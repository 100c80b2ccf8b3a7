"""
Pool of short interstitial clips shared by every channel.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Dict, List, Optional, Sequence

from . import settings
from .fanout import gather_isolated
from .models import Bumper, Video
from .source_fetcher import SourceFetcher

LOGGER = logging.getLogger(__name__)


class BumperRepository:
    """
    Holds the current bumper pool.

    ``refresh`` rebuilds the pool from the configured bumper sources, keeping
    only clips at or under ``max_duration`` seconds. The pool can also be
    loaded directly (for example from the relational store).
    """

    def __init__(
        self,
        fetcher: Optional[SourceFetcher] = None,
        source_ids: Optional[Sequence[str]] = None,
        max_duration: int = settings.MAX_BUMPER_DURATION,
        rng: Optional[random.Random] = None,
        bumpers: Optional[Sequence[Bumper]] = None,
        refresh_interval: float = settings.BUMPER_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.source_ids = list(source_ids) if source_ids is not None else None
        self.max_duration = max_duration
        self.rng = rng or random.Random()
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._bumpers: List[Bumper] = list(bumpers or [])
        self._refreshed_at: Optional[float] = self._clock() if bumpers else None

    @property
    def bumpers(self) -> List[Bumper]:
        return list(self._bumpers)

    @property
    def loaded(self) -> bool:
        return self._refreshed_at is not None

    def __len__(self) -> int:
        return len(self._bumpers)

    def load(self, bumpers: Sequence[Bumper]) -> None:
        self._bumpers = list(bumpers)
        self._refreshed_at = self._clock()

    def is_stale(self) -> bool:
        if self._refreshed_at is None:
            return True
        return self._clock() - self._refreshed_at >= self.refresh_interval

    def refresh(self) -> List[Bumper]:
        """Fetch every bumper source and keep the duration-bounded clips."""
        if self.fetcher is None:
            LOGGER.warning("No fetcher configured; bumper pool left unchanged")
            return self.bumpers

        source_ids = self.source_ids if self.source_ids is not None else settings.bumper_playlists()
        LOGGER.info("Fetching bumpers from %d playlist(s)", len(source_ids))

        results = gather_isolated(
            lambda pid: self.fetcher.fetch(pid, channel_hint="bumper"),
            source_ids,
            default=list,
            label="bumper playlist",
        )

        candidates: Dict[str, Video] = {}
        for videos in results:
            for video in videos:
                candidates.setdefault(video.id, video)

        durations = self.fetcher.client.video_durations(list(candidates))
        bumpers = [
            Bumper(id=video.id, title=video.title, duration=durations[video.id])
            for video in candidates.values()
            if durations.get(video.id) and durations[video.id] <= self.max_duration
        ]

        LOGGER.info(
            "Found %d bumpers (<= %ds) out of %d total",
            len(bumpers), self.max_duration, len(candidates),
        )
        self.load(bumpers)
        return self.bumpers

    def refresh_if_stale(self) -> List[Bumper]:
        """Rebuild the pool once ``refresh_interval`` has passed; directly loaded pools are left alone."""
        if self.fetcher is not None and self.is_stale():
            return self.refresh()
        return self.bumpers

    def sample_one(self, previous: Optional[Bumper] = None) -> Optional[Bumper]:
        """Pick a random bumper, never repeating ``previous`` when the pool allows."""
        pool = self._bumpers
        if not pool:
            return None
        if previous is not None and len(pool) > 1:
            candidates = [bumper for bumper in pool if bumper.id != previous.id]
            if candidates:
                return self.rng.choice(candidates)
        return self.rng.choice(pool)

    def sample_many(self, count: int) -> List[Bumper]:
        picks: List[Bumper] = []
        previous: Optional[Bumper] = None
        for _ in range(max(0, count)):
            bumper = self.sample_one(previous)
            if bumper is None:
                break
            picks.append(bumper)
            previous = bumper
        return picks
