"""
Fetch a source's items from the video platform, page by page, and keep the
results in a PlaylistCache.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import settings
from .errors import SourceFetchError, UpstreamError
from .fanout import gather_isolated
from .models import Video
from .playlist_cache import PlaylistCache
from .titles import NO_SPLIT_CONTEXTS, clean_title, parse_title
from .youtube_client import YouTubeClient, is_sentinel_item

LOGGER = logging.getLogger(__name__)

PAGE_DELAY_SECONDS = 0.1


def video_from_item(
    item: Dict[str, Any], source_id: str, channel_hint: Optional[str] = None
) -> Optional[Video]:
    snippet = item.get("snippet") or {}
    video_id = (snippet.get("resourceId") or {}).get("videoId")
    if not video_id:
        return None
    title, artist, song = parse_title(clean_title(snippet.get("title", "")), channel_hint)
    return Video(id=video_id, title=title, artist=artist, song=song, playlist_id=source_id)


def cache_key(source_id: str, channel_hint: Optional[str] = None) -> str:
    """Items parsed without the artist/song split are cached apart from split ones."""
    if channel_hint in NO_SPLIT_CONTEXTS:
        return f"{source_id}:unsplit"
    return source_id


class SourceFetcher:
    """
    Resolves source ids to item lists.

    Official sources are fetched in full and kept for a day; custom sources a
    caller supplies are capped at 100 items, fetched with a shorter timeout
    and kept for an hour. A failed fetch is cached as an empty list so the
    next request inside the TTL does not go upstream again.
    """

    def __init__(
        self,
        client: Optional[YouTubeClient] = None,
        cache: Optional[PlaylistCache] = None,
        custom_cache: Optional[PlaylistCache] = None,
        page_delay: float = PAGE_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client or YouTubeClient()
        self.cache = cache or PlaylistCache(settings.OFFICIAL_CACHE_TTL)
        self.custom_cache = custom_cache or PlaylistCache(settings.CUSTOM_CACHE_TTL)
        self.page_delay = page_delay
        self._clock = clock
        self._sleep = sleep

    def fetch(
        self,
        source_id: str,
        max_items: Optional[int] = None,
        channel_hint: Optional[str] = None,
        timeout: Optional[float] = None,
        strict: bool = False,
    ) -> List[Video]:
        """
        Page through a source until it runs out or ``max_items`` is reached.

        On timeout or upstream error an empty list is returned, unless
        ``strict`` is set, in which case SourceFetchError is raised and the
        caller decides whether to skip the source.
        """
        if timeout is None:
            timeout = settings.CUSTOM_FETCH_TIMEOUT if max_items else settings.OFFICIAL_FETCH_TIMEOUT
        deadline = self._clock() + timeout

        videos: List[Video] = []
        page_token: Optional[str] = None
        page_count = 0
        try:
            while True:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise UpstreamError(f"fetch timeout after {timeout:.0f}s")
                items, page_token = self.client.list_playlist_page(
                    source_id, page_token, timeout=remaining
                )
                page_count += 1

                for item in items:
                    if is_sentinel_item(item):
                        continue
                    video = video_from_item(item, source_id, channel_hint)
                    if video is not None:
                        videos.append(video)

                if max_items and len(videos) >= max_items:
                    LOGGER.debug(
                        "Reached limit of %d videos from %d page(s) of %s",
                        max_items, page_count, source_id,
                    )
                    return videos[:max_items]

                if not page_token:
                    break
                if self.page_delay:
                    self._sleep(self.page_delay)
        except UpstreamError as exc:
            if strict:
                raise SourceFetchError(source_id, str(exc)) from exc
            LOGGER.warning("Error fetching playlist %s: %s", source_id, exc)
            return []

        LOGGER.debug("Fetched %d videos from %d page(s) of %s", len(videos), page_count, source_id)
        return videos

    def get_items(
        self,
        source_id: str,
        max_items: Optional[int] = None,
        channel_hint: Optional[str] = None,
        custom: bool = False,
        strict: bool = False,
        key_prefix: str = "",
    ) -> List[Video]:
        """Cached fetch. Returns a fresh list the caller may reorder."""
        cache = self.custom_cache if custom else self.cache
        key = key_prefix + cache_key(source_id, channel_hint)
        cached = cache.get(key)
        if cached is not None:
            return list(cached[:max_items] if max_items else cached)

        try:
            videos = self.fetch(source_id, max_items, channel_hint, strict=True)
        except SourceFetchError:
            cache.put(key, [])
            if strict:
                raise
            LOGGER.warning("Caching empty result for %s until TTL expiry", source_id)
            return []

        cache.put(key, videos)
        LOGGER.info("Cached %d videos from %s", len(videos), source_id)
        return list(videos)

    def get_official(
        self, source_id: str, channel_hint: Optional[str] = None, strict: bool = False
    ) -> List[Video]:
        return self.get_items(source_id, None, channel_hint, custom=False, strict=strict)

    def get_sample(
        self, source_id: str, max_items: int, channel_hint: Optional[str] = None
    ) -> List[Video]:
        """
        Up to ``max_items`` of an official source. A fully cached source is
        sliced; otherwise only the pages needed are fetched, and kept on the
        short-lived cache so the full official entry is not truncated.
        """
        cached = self.cache.get(cache_key(source_id, channel_hint))
        if cached is not None:
            return list(cached[:max_items])
        return self.get_items(
            source_id, max_items, channel_hint, custom=True, key_prefix="sample:"
        )

    def get_custom(self, source_id: str, channel_hint: Optional[str] = None) -> List[Video]:
        return self.get_items(
            source_id, settings.CUSTOM_SOURCE_MAX_ITEMS, channel_hint, custom=True
        )

    def get_many(
        self,
        source_ids: Sequence[str],
        channel_hint: Optional[str] = None,
        custom: bool = False,
    ) -> List[List[Video]]:
        """Fetch several sources in parallel; a failing source yields []."""

        def _load(source_id: str) -> List[Video]:
            if custom:
                return self.get_custom(source_id, channel_hint)
            return self.get_official(source_id, channel_hint, strict=True)

        return gather_isolated(_load, list(source_ids), default=list, label="playlist")
