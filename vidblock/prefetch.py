"""
Startup cache warm-up, readiness reporting and on-demand channel unlock.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import settings
from .availability import AvailabilityTracker
from .bumper_pool import BumperRepository
from .catalog_store import CatalogStore
from .errors import ChannelNotFoundError, VidblockError
from .fanout import gather_isolated
from .source_fetcher import SourceFetcher

LOGGER = logging.getLogger(__name__)


class CacheWarmer:
    def __init__(
        self,
        fetcher: SourceFetcher,
        bumpers: BumperRepository,
        store: Optional[CatalogStore] = None,
        tracker: Optional[AvailabilityTracker] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.bumpers = bumpers
        self.store = store
        self.tracker = tracker
        self._clock = clock
        self._ready = False
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None
        self._unlocked: Dict[str, bool] = {}
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _warm_sources(self, channels: List[Dict[str, Any]]) -> int:
        """Fetch every official source of ``channels``; returns how many came back non-empty."""
        jobs: List[Tuple[str, str]] = []
        seen = set()
        for channel in channels:
            for playlist_id in channel.get("playlists", []):
                if playlist_id not in seen:
                    seen.add(playlist_id)
                    jobs.append((playlist_id, channel["id"]))

        def _load(job: Tuple[str, str]) -> int:
            playlist_id, channel_hint = job
            return len(self.fetcher.get_official(playlist_id, channel_hint, strict=True))

        counts = gather_isolated(_load, jobs, default=int, label="prefetch playlist")
        loaded = sum(1 for count in counts if count)
        LOGGER.info("Prefetched %d/%d playlist(s) for %d channel(s)", loaded, len(jobs), len(channels))
        return loaded

    def warm(self) -> None:
        """Fill the playlist cache and bumper pool. Never raises."""
        self._started_at = self._clock()
        self._finished_at = None
        self._ready = False
        LOGGER.info("Pre-fetching all playlists...")

        try:
            channels = [ch for ch in settings.list_channels() if not ch["unlockable"]]
            self._warm_sources(channels)
        except Exception:
            LOGGER.exception("Playlist prefetch failed; serving from an empty cache")

        try:
            self.bumpers.refresh()
        except Exception:
            LOGGER.exception("Bumper refresh failed")

        if self.tracker is not None and self.store is not None:
            try:
                self.tracker.load_suppressed_from_store()
            except VidblockError as exc:
                LOGGER.warning("Could not load suppressed videos from store: %s", exc)

        self._finished_at = self._clock()
        self._ready = True
        LOGGER.info(
            "Prefetch complete in %.1fs (%d cached playlist(s), %d bumper(s))",
            self._finished_at - self._started_at, len(self.fetcher.cache), len(self.bumpers),
        )

    def start_background(self) -> threading.Thread:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return self._thread
            self._thread = threading.Thread(target=self.warm, name="vidblock-prefetch", daemon=True)
            self._thread.start()
            return self._thread

    def is_unlocked(self, channel_id: str) -> bool:
        return channel_id in self._unlocked

    def is_channel_ready(self, channel_id: str) -> bool:
        return self._unlocked.get(channel_id, False)

    def unlock(self, channel_id: str) -> Dict[str, Any]:
        """
        Load an unlockable channel's sources. The channel is visible from
        now on; its readiness flag is set once its sources are cached.
        """
        channel = settings.get_channel(channel_id)
        if channel is None or not channel["unlockable"]:
            raise ChannelNotFoundError(channel_id)

        if not self.is_channel_ready(channel_id):
            LOGGER.info("Unlocking channel %s", channel_id)
            self._unlocked.setdefault(channel_id, False)
            loaded = self._warm_sources([channel])
            self._unlocked[channel_id] = loaded > 0 or self.store is not None

        return {"channel": channel_id, "unlocked": True, "ready": self.is_channel_ready(channel_id)}

    def status(self) -> Dict[str, Any]:
        cache_size = len(self.fetcher.cache)
        bumpers_loaded = len(self.bumpers) > 0
        if self._started_at is None:
            loading_time = 0
        else:
            end = self._finished_at if self._finished_at is not None else self._clock()
            loading_time = int((end - self._started_at) * 1000)
        return {
            "ready": self._ready and (cache_size > 0 or self.store is not None) and bumpers_loaded,
            "cacheSize": cache_size,
            "bumpersLoaded": bumpers_loaded,
            "bumpersCount": len(self.bumpers),
            "loadingTime": loading_time,
            "unlocked": dict(self._unlocked),
        }
