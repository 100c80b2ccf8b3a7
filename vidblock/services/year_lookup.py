"""
Release-year lookup against the IMVDb search API.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from vidblock import settings

LOGGER = logging.getLogger(__name__)

IMVDB_SEARCH_URL = "https://imvdb.com/api/v1/search/videos"
REQUEST_TIMEOUT = 5

# title -> (timestamp, year)
_cache: Dict[str, Tuple[float, Optional[int]]] = {}


def clear_cache() -> None:
    _cache.clear()


def _parse_year(value: Any) -> Optional[int]:
    try:
        year = int(value)
    except (TypeError, ValueError):
        return None
    return year if year > 0 else None


def lookup_year(
    title: str,
    session: Optional[requests.Session] = None,
    clock: Callable[[], float] = time.time,
) -> Optional[int]:
    """
    Returns the best-guess release year for a video title, or None when no
    key is configured, nothing matches, or the API call fails.

    Results (including misses) are cached in memory for YEAR_CACHE_TTL.
    """
    key = (title or "").strip().lower()
    if not key:
        return None

    now = clock()
    cached = _cache.get(key)
    if cached is not None and now - cached[0] < settings.YEAR_CACHE_TTL:
        return cached[1]

    api_key = settings.imvdb_api_key()
    if not api_key:
        LOGGER.debug("IMVDB_API_KEY not set; skipping year lookup")
        return None

    http = session or requests
    try:
        resp = http.get(
            IMVDB_SEARCH_URL,
            params={"q": title, "limit": 1},
            headers={"IMVDB-APP-KEY": api_key},
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        LOGGER.warning("Error fetching year from IMVDb for %r: %s", title, exc)
        return None

    results = data.get("results") if isinstance(data, dict) else None
    first = results[0] if isinstance(results, list) and results else None
    year = _parse_year(first.get("year")) if isinstance(first, dict) else None
    if year:
        LOGGER.info("Found year %s for %r", year, title)
    else:
        LOGGER.info("No year found for %r", title)

    _cache[key] = (now, year)
    return year
