"""
Bounded parallel fan-out with per-task error capture.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from .settings import FANOUT_WIDTH

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def gather_isolated(
    func: Callable[[T], R],
    args: Sequence[T],
    default: Callable[[], R],
    max_workers: int = FANOUT_WIDTH,
    label: str = "task",
) -> List[R]:
    """
    Run ``func`` over ``args`` with at most ``max_workers`` in flight and
    return results in input order.

    A task that raises is logged and replaced by ``default()``; siblings keep
    running and the join never short-circuits.
    """
    if not args:
        return []

    results: List[Optional[Any]] = [None] * len(args)
    if len(args) == 1:
        results[0] = _run_one(func, args[0], default, label)
        return results  # type: ignore[return-value]

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(args)))) as executor:
        future_to_index = {
            executor.submit(func, arg): idx for idx, arg in enumerate(args)
        }
        for future in as_completed(future_to_index):
            idx = future_to_index[future]
            try:
                results[idx] = future.result()
            except Exception as exc:
                LOGGER.warning("%s %r failed: %s", label, args[idx], exc)
                results[idx] = default()

    return results  # type: ignore[return-value]


def _run_one(func: Callable[[T], R], arg: T, default: Callable[[], R], label: str) -> R:
    try:
        return func(arg)
    except Exception as exc:
        LOGGER.warning("%s %r failed: %s", label, arg, exc)
        return default()
