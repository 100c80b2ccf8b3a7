"""
Bumper interleaving: places clips from the shared pool between the regular
items of a block according to the channel's pattern.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .bumper_pool import BumperRepository
from .models import Bumper, Entry, Video

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BumperPattern:
    """Insert a bumper right after each listed 1-indexed source position."""

    name: str
    after_positions: Tuple[int, ...]


# [2 items, B, 4 items, B, 4 items, B, 2 items, B]
POSITIONAL = BumperPattern("positional", (2, 6, 10, 12))
# [item, B, item, item, B]
SHORT_FORM = BumperPattern("short_form", (1, 3))

PATTERNS: Dict[str, BumperPattern] = {
    POSITIONAL.name: POSITIONAL,
    SHORT_FORM.name: SHORT_FORM,
}


def resolve_pattern(name: Optional[str]) -> BumperPattern:
    return PATTERNS.get(name or "", POSITIONAL)


def interleave(
    items: Sequence[Video], pattern: BumperPattern, pool: BumperRepository
) -> List[Entry]:
    """
    Return ``items`` with bumpers inserted after the pattern's positions.

    An empty pool leaves the sequence unchanged. Consecutive inserted bumpers
    differ whenever the pool holds more than one clip.
    """
    if len(pool) == 0:
        return list(items)

    positions = set(pattern.after_positions)
    result: List[Entry] = []
    previous: Optional[Bumper] = None
    for position, item in enumerate(items, start=1):
        result.append(item)
        if position in positions:
            bumper = pool.sample_one(previous)
            if bumper is not None:
                result.append(bumper)
                previous = bumper

    LOGGER.debug(
        "Interleaved %d bumper(s) into %d item(s) using %s pattern",
        len(result) - len(items), len(items), pattern.name,
    )
    return result
