"""
Next-block orchestration across the relational-store and platform-API
backends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from . import settings
from .availability import AvailabilityTracker
from .bumper_block import interleave, resolve_pattern
from .bumper_pool import BumperRepository
from .catalog_store import CatalogStore
from .errors import (
    BlockAssemblyError,
    ChannelNotFoundError,
    NoSourcesError,
    SourceFetchError,
    VidblockError,
)
from .fanout import gather_isolated
from .mixing import MixingEngine, official_refs, valid_custom_refs
from .models import Block, SourceRef, Video, WorkingSet
from .source_fetcher import SourceFetcher

LOGGER = logging.getLogger(__name__)

RANDOM_LABEL = "Random Mix"


@dataclass
class BlockRequest:
    channel: Dict[str, Any]
    custom_source_ids: List[str] = field(default_factory=list)
    exclude_source_ids: List[str] = field(default_factory=list)
    exclude_item_ids: List[str] = field(default_factory=list)
    prefer_custom: bool = False
    blend: bool = False

    @property
    def channel_id(self) -> str:
        return self.channel["id"]

    @property
    def block_size(self) -> int:
        return self.channel["block_size"]


def random_eligible_channels() -> List[Dict[str, Any]]:
    return [channel for channel in settings.list_channels() if channel.get("include_in_random")]


def _unique_refs(refs: Sequence[SourceRef]) -> List[SourceRef]:
    seen: Set[str] = set()
    unique: List[SourceRef] = []
    for ref in refs:
        if ref.id not in seen:
            seen.add(ref.id)
            unique.append(ref)
    return unique


class Backend:
    """Produces a block for one request; raises on any failure."""

    name = "backend"

    def __init__(
        self,
        engine: MixingEngine,
        bumpers: BumperRepository,
        tracker: Optional[AvailabilityTracker] = None,
    ):
        self.engine = engine
        self.bumpers = bumpers
        self.tracker = tracker

    @property
    def enabled(self) -> bool:
        return True

    def suppressed(self) -> Set[str]:
        return self.tracker.suppressed_ids() if self.tracker is not None else set()

    def working_set(self, request: BlockRequest) -> WorkingSet:
        raise NotImplementedError

    def bumper_pool(self) -> BumperRepository:
        try:
            self.bumpers.refresh_if_stale()
        except VidblockError as exc:
            LOGGER.warning("Bumper refresh failed; keeping current pool: %s", exc)
        return self.bumpers

    def build(self, request: BlockRequest) -> Block:
        working = self.working_set(request)
        if not working.items:
            raise SourceFetchError(working.source_id, "no playable items")
        pattern = resolve_pattern(request.channel.get("bumper_pattern"))
        entries = interleave(working.items, pattern, self.bumper_pool())
        return Block(playlist_label=working.source_label, playlist_id=working.source_id, items=entries)

    def random_set(
        self,
        request: BlockRequest,
        refs: Sequence[SourceRef],
        loader: Callable[[SourceRef], List[Video]],
    ) -> WorkingSet:
        """Merge a bounded sample of regular sources plus any custom ones."""
        sampled = self.engine.sample_sources(_unique_refs(refs), settings.RANDOM_CHANNEL_SAMPLE)
        custom = valid_custom_refs(request.custom_source_ids, request.channel_id)
        if not sampled and not custom:
            raise NoSourcesError(request.channel_id)

        LOGGER.info(
            "Random channel: sampling %d playlist(s) + %d custom",
            len(sampled), len(custom),
        )
        lists = gather_isolated(loader, sampled + custom, default=list, label="random playlist")
        items = self.engine.random_mix(
            lists, request.block_size, request.exclude_item_ids, self.suppressed()
        )
        return WorkingSet(items=items, source_label=RANDOM_LABEL, source_id=request.channel_id)


class ApiBackend(Backend):
    """Blocks drawn from cached platform playlists."""

    name = "api"

    def __init__(
        self,
        fetcher: SourceFetcher,
        engine: MixingEngine,
        bumpers: BumperRepository,
        tracker: Optional[AvailabilityTracker] = None,
    ):
        super().__init__(engine, bumpers, tracker)
        self.fetcher = fetcher

    def _loader(self, channel_hint: str, per_source_limit: Optional[int] = None):
        def _load(ref: SourceRef) -> List[Video]:
            if ref.is_custom:
                return self.fetcher.get_custom(ref.id, channel_hint)
            if per_source_limit:
                return self.fetcher.get_sample(ref.id, per_source_limit, channel_hint)
            return self.fetcher.get_official(ref.id, channel_hint)

        return _load

    def working_set(self, request: BlockRequest) -> WorkingSet:
        channel = request.channel
        if channel["kind"] == "random":
            refs = [ref for ch in random_eligible_channels() for ref in official_refs(ch)]
            return self.random_set(
                request, refs, self._loader(channel["id"], settings.RANDOM_CHANNEL_PER_SOURCE)
            )

        return self.engine.compose_working_set(
            channel,
            official_refs(channel),
            self._loader(channel["id"]),
            custom_source_ids=request.custom_source_ids,
            exclude_item_ids=request.exclude_item_ids,
            exclude_playlist_ids=request.exclude_source_ids,
            prefer_custom=request.prefer_custom,
            blend=request.blend,
            suppressed=self.suppressed(),
        )


class StoreBackend(Backend):
    """
    Blocks drawn from the relational store. Custom sources are not stored,
    so they still come from the platform through ``fetcher``.
    """

    name = "database"

    def __init__(
        self,
        store: Optional[CatalogStore],
        engine: MixingEngine,
        bumpers: BumperRepository,
        tracker: Optional[AvailabilityTracker] = None,
        fetcher: Optional[SourceFetcher] = None,
    ):
        super().__init__(engine, bumpers, tracker)
        self.store = store
        self.fetcher = fetcher

    @property
    def enabled(self) -> bool:
        return self.store is not None

    def suppressed(self) -> Set[str]:
        # Flags set directly in the store must hold even without a warm-up
        flagged = self.store.suppressed_video_ids()
        if self.tracker is not None:
            self.tracker.mark_suppressed(flagged)
        return super().suppressed() | set(flagged)

    def bumper_pool(self) -> BumperRepository:
        stored = self.store.all_bumpers()
        if not stored:
            return super().bumper_pool()
        return BumperRepository(bumpers=stored, rng=self.engine.rng)

    def _loader(
        self,
        channel_hint: str,
        limit: Optional[int] = None,
        exclude_item_ids: Sequence[str] = (),
    ):
        def _load(ref: SourceRef) -> List[Video]:
            if ref.is_custom:
                if self.fetcher is None:
                    return []
                return self.fetcher.get_custom(ref.id, channel_hint)
            return self.store.videos_for_playlist(ref.id, limit=limit, exclude_video_ids=exclude_item_ids)

        return _load

    def working_set(self, request: BlockRequest) -> WorkingSet:
        channel = request.channel
        channel_id = channel["id"]

        if channel["kind"] == "random":
            refs = [
                ref for ch in random_eligible_channels()
                for ref in self.store.playlists_for_channel(ch["id"])
            ]
            return self.random_set(
                request, refs, self._loader(channel_id, settings.RANDOM_CHANNEL_PER_SOURCE)
            )

        custom = valid_custom_refs(request.custom_source_ids, channel_id)
        if channel["kind"] == "live" or (request.blend and custom):
            return self.engine.compose_working_set(
                channel,
                self.store.playlists_for_channel(channel_id),
                self._loader(channel_id),
                custom_source_ids=request.custom_source_ids,
                exclude_item_ids=request.exclude_item_ids,
                blend=True,
                suppressed=self.suppressed(),
            )

        if custom and request.prefer_custom:
            return self._custom_only(request)

        ref = self.store.random_playlist_for_channel(channel_id, request.exclude_source_ids)
        if ref is None:
            if custom:
                return self._custom_only(request)
            raise NoSourcesError(channel_id)

        suppressed = self.suppressed()
        videos = self.store.videos_for_playlist(
            ref.id, limit=request.block_size, exclude_video_ids=request.exclude_item_ids
        )
        items = self.engine.single_source_block(videos, request.block_size, (), suppressed)
        if not items and request.exclude_item_ids:
            LOGGER.info("Playlist %s exhausted by exclusions; resetting", ref.id)
            videos = self.store.videos_for_playlist(ref.id, limit=request.block_size)
            items = self.engine.single_source_block(videos, request.block_size, (), suppressed)
        return WorkingSet(items=items, source_label=ref.label, source_id=ref.id)

    def _custom_only(self, request: BlockRequest) -> WorkingSet:
        return self.engine.compose_working_set(
            request.channel,
            [],
            self._loader(request.channel_id),
            custom_source_ids=request.custom_source_ids,
            exclude_item_ids=request.exclude_item_ids,
            exclude_playlist_ids=request.exclude_source_ids,
            prefer_custom=True,
            suppressed=self.suppressed(),
        )


class BlockAssembler:
    """
    Resolves a channel and tries each enabled backend in order; the first
    block produced wins. Every failure is logged and the next backend is
    tried once. When all fail, the collected failures are raised together.
    """

    def __init__(
        self,
        backends: Sequence[Backend],
        is_unlocked: Optional[Callable[[str], bool]] = None,
    ):
        self.backends = list(backends)
        self._is_unlocked = is_unlocked or (lambda channel_id: False)

    def resolve_channel(self, channel_id: str) -> Dict[str, Any]:
        channel = settings.get_channel(channel_id)
        if channel is None:
            raise ChannelNotFoundError(channel_id)
        if channel["unlockable"] and not self._is_unlocked(channel_id):
            raise ChannelNotFoundError(channel_id)
        return channel

    def get_next_block(
        self,
        channel_id: str,
        custom_source_ids: Optional[Sequence[str]] = None,
        exclude_source_ids: Optional[Sequence[str]] = None,
        exclude_item_ids: Optional[Sequence[str]] = None,
        prefer_custom: bool = False,
        blend: bool = False,
    ) -> Block:
        channel = self.resolve_channel(channel_id)
        request = BlockRequest(
            channel=channel,
            custom_source_ids=list(custom_source_ids or []),
            exclude_source_ids=[str(pid) for pid in exclude_source_ids or []],
            exclude_item_ids=list(exclude_item_ids or []),
            prefer_custom=prefer_custom,
            blend=blend,
        )

        failures: List[Tuple[str, Exception]] = []
        for backend in self.backends:
            if not backend.enabled:
                continue
            try:
                block = backend.build(request)
            except Exception as exc:
                LOGGER.error(
                    "%s backend failed for channel %s: %s", backend.name, channel_id, exc,
                    exc_info=True,
                )
                failures.append((backend.name, exc))
                continue
            if failures:
                LOGGER.info("Served channel %s from %s backend after fallback", channel_id, backend.name)
            return block

        if failures and isinstance(failures[-1][1], NoSourcesError):
            raise failures[-1][1]
        raise BlockAssemblyError(channel_id, failures)
