"""
Working-set composition: source selection, single-source blocks and the
custom/official blend.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Callable, Collection, Dict, Iterable, List, Optional, Sequence

from . import settings
from .errors import NoSourcesError
from .fanout import gather_isolated
from .models import SourceRef, Video, WorkingSet

LOGGER = logging.getLogger(__name__)

ItemLoader = Callable[[SourceRef], List[Video]]


def dedupe(items: Iterable[Video]) -> List[Video]:
    """Drop repeated ids, keeping the first occurrence."""
    seen = set()
    unique: List[Video] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def fill_block(items: Sequence[Video], block_size: int) -> List[Video]:
    """Take ``block_size`` items, repeating cyclically when there are too few."""
    if not items or block_size <= 0:
        return []
    return [items[idx % len(items)] for idx in range(block_size)]


def valid_custom_refs(source_ids: Iterable[Any], channel_id: Optional[str] = None) -> List[SourceRef]:
    """Turn caller-supplied ids into refs, silently dropping malformed ones."""
    refs: List[SourceRef] = []
    seen = set()
    for source_id in source_ids or []:
        if not settings.is_valid_playlist_id(source_id):
            LOGGER.debug("Ignoring invalid custom playlist id %r", source_id)
            continue
        if source_id in seen:
            continue
        seen.add(source_id)
        refs.append(SourceRef(id=source_id, label="Custom playlist", channel_id=channel_id, is_custom=True))
    return refs


def official_refs(channel: Dict[str, Any]) -> List[SourceRef]:
    labels = channel.get("playlist_labels") or {}
    return [
        SourceRef(id=pid, label=labels.get(pid) or channel.get("name", ""), channel_id=channel["id"])
        for pid in channel.get("playlists", [])
    ]


class MixingEngine:
    """
    Composes the ordered items of one block.

    All randomness goes through ``rng`` so a seeded instance gives
    reproducible blocks.
    """

    def __init__(self, rng: Optional[random.Random] = None, custom_pool_cap: int = settings.CUSTOM_POOL_CAP):
        self.rng = rng or random.Random()
        self.custom_pool_cap = custom_pool_cap

    def shuffle(self, items: Iterable[Video]) -> List[Video]:
        # random.shuffle is an in-place Fisher-Yates
        shuffled = list(items)
        self.rng.shuffle(shuffled)
        return shuffled

    def sample_sources(self, refs: Sequence[SourceRef], count: int) -> List[SourceRef]:
        if len(refs) <= count:
            return list(refs)
        return self.rng.sample(list(refs), count)

    def select_source(
        self,
        official: Sequence[SourceRef],
        custom: Sequence[SourceRef],
        exclude_ids: Collection[str] = (),
        prefer_custom: bool = False,
    ) -> Optional[SourceRef]:
        """
        Pick one source at random from the preferred pool, falling back to
        the other pool only when the preferred one is empty. Exclusions that
        empty the chosen pool are ignored.
        """
        pools = (custom, official) if prefer_custom else (official, custom)
        excluded = set(exclude_ids or ())
        for pool in pools:
            if not pool:
                continue
            candidates = [ref for ref in pool if ref.id not in excluded]
            if not candidates:
                LOGGER.info("All %d playlist(s) excluded; resetting exclusions", len(pool))
                candidates = list(pool)
            return self.rng.choice(candidates)
        return None

    def single_source_block(
        self,
        items: Iterable[Video],
        block_size: int,
        exclude_item_ids: Collection[str] = (),
        suppressed: Collection[str] = (),
    ) -> List[Video]:
        """
        Shuffle a source's unseen items and take a block from them.

        Suppressed ids are always removed. Seen ids are removed unless that
        would leave nothing, in which case the whole source is reused.
        """
        playable = [item for item in dedupe(items) if item.id not in suppressed]
        excluded = set(exclude_item_ids or ())
        unseen = [item for item in playable if item.id not in excluded]
        if not unseen and playable:
            LOGGER.info("All %d item(s) already seen; resetting item exclusions", len(playable))
            unseen = playable
        return fill_block(self.shuffle(unseen), block_size)

    def build_custom_pool(self, custom_lists: Sequence[Sequence[Video]]) -> List[Video]:
        """
        Round-robin across custom sources so each one is equally represented,
        stopping at ``custom_pool_cap`` items.
        """
        sources = [self.shuffle(dedupe(items)) for items in custom_lists if items]
        pool: List[Video] = []
        seen = set()
        index = 0
        while len(pool) < self.custom_pool_cap:
            progressed = False
            for items in sources:
                if index >= len(items):
                    continue
                progressed = True
                item = items[index]
                if item.id in seen:
                    continue
                seen.add(item.id)
                pool.append(item)
                if len(pool) >= self.custom_pool_cap:
                    break
            if not progressed:
                break
            index += 1
        return pool

    def blend(self, official_items: Iterable[Video], custom_lists: Sequence[Sequence[Video]]) -> List[Video]:
        """
        Alternate custom and official items in equal measure.

        Custom items win duplicates. Both sides are cut to the smaller side's
        length before interleaving. With only one side present, that side is
        returned shuffled.
        """
        official = dedupe(official_items)
        custom_pool = self.build_custom_pool(custom_lists)

        if not custom_pool:
            return self.shuffle(official)
        if not official:
            return self.shuffle(custom_pool)

        custom_ids = {item.id for item in custom_pool}
        official = self.shuffle(item for item in official if item.id not in custom_ids)

        per_side = min(len(custom_pool), len(official))
        custom_pool = custom_pool[:per_side]
        official = official[:per_side]
        LOGGER.info(
            "Blending %d custom + %d official = %d item(s)",
            len(custom_pool), len(official), per_side * 2,
        )

        mixed: List[Video] = []
        for custom_item, official_item in zip(custom_pool, official):
            mixed.append(custom_item)
            mixed.append(official_item)
        return mixed

    def random_mix(
        self,
        source_lists: Sequence[Sequence[Video]],
        block_size: int,
        exclude_item_ids: Collection[str] = (),
        suppressed: Collection[str] = (),
    ) -> List[Video]:
        merged = [item for items in source_lists for item in items]
        return self.single_source_block(merged, block_size, exclude_item_ids, suppressed)

    def compose_working_set(
        self,
        channel: Dict[str, Any],
        official_sources: Sequence[SourceRef],
        loader: ItemLoader,
        custom_source_ids: Iterable[Any] = (),
        exclude_item_ids: Collection[str] = (),
        exclude_playlist_ids: Collection[str] = (),
        prefer_custom: bool = False,
        blend: bool = False,
        suppressed: Collection[str] = (),
    ) -> WorkingSet:
        """
        Build the ordered items for one block of ``channel``.

        Live channels and explicit ``blend`` requests with custom sources use
        the blend; everything else draws a single source. ``loader`` resolves
        a source to its items and must not raise for an unavailable source.
        """
        custom = valid_custom_refs(custom_source_ids, channel["id"])
        block_size = channel["block_size"]

        if not official_sources and not custom:
            raise NoSourcesError(channel["id"])

        if channel.get("kind") == "live" or (blend and custom):
            return self._blended_set(
                channel, official_sources, custom, loader, exclude_item_ids, suppressed
            )
        return self._single_source_set(
            channel, official_sources, custom, loader,
            exclude_item_ids, exclude_playlist_ids, prefer_custom, suppressed,
        )

    def _single_source_set(
        self,
        channel: Dict[str, Any],
        official: Sequence[SourceRef],
        custom: Sequence[SourceRef],
        loader: ItemLoader,
        exclude_item_ids: Collection[str],
        exclude_playlist_ids: Collection[str],
        prefer_custom: bool,
        suppressed: Collection[str],
    ) -> WorkingSet:
        tried = set()
        ref: Optional[SourceRef] = None
        for _ in range(len(official) + len(custom)):
            ref = self.select_source(
                [r for r in official if r.id not in tried],
                [r for r in custom if r.id not in tried],
                exclude_playlist_ids,
                prefer_custom,
            )
            if ref is None:
                break
            items = self.single_source_block(
                loader(ref), channel["block_size"], exclude_item_ids, suppressed
            )
            if items:
                LOGGER.info("Selected playlist %s (%s) for %s", ref.id, ref.label, channel["id"])
                return WorkingSet(items=items, source_label=ref.label, source_id=ref.id)
            LOGGER.warning("Playlist %s returned no playable items; trying another", ref.id)
            tried.add(ref.id)

        fallback = ref or (list(official) + list(custom))[0]
        return WorkingSet(items=[], source_label=fallback.label, source_id=fallback.id)

    def _blended_set(
        self,
        channel: Dict[str, Any],
        official: Sequence[SourceRef],
        custom: Sequence[SourceRef],
        loader: ItemLoader,
        exclude_item_ids: Collection[str],
        suppressed: Collection[str],
    ) -> WorkingSet:
        official_lists = gather_isolated(loader, list(official), default=list, label="official playlist")
        custom_lists = gather_isolated(loader, list(custom), default=list, label="custom playlist")

        excluded = set(exclude_item_ids or ())

        def _playable(lists: List[List[Video]], skip_seen: bool) -> List[List[Video]]:
            return [
                [
                    item for item in items
                    if item.id not in suppressed and not (skip_seen and item.id in excluded)
                ]
                for items in lists
            ]

        official_unseen = _playable(official_lists, True)
        custom_unseen = _playable(custom_lists, True)
        if not any(official_unseen) and not any(custom_unseen):
            official_unseen = _playable(official_lists, False)
            custom_unseen = _playable(custom_lists, False)

        mixed = self.blend((item for items in official_unseen for item in items), custom_unseen)
        label = f"{channel['name']} Mix"
        if custom:
            label = f"{channel['name']} + {len(custom)} custom"
        return WorkingSet(items=mixed[: channel["block_size"]], source_label=label, source_id=channel["id"])
