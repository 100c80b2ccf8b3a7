"""
Thin client for the video platform's Data API (playlist items, durations,
playlist metadata).
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from . import settings
from .errors import UpstreamError

LOGGER = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/youtube/v3"
PAGE_SIZE = 50
DURATION_BATCH_SIZE = 50
SENTINEL_TITLES = {"Deleted video", "Private video"}
ISO_DURATION_PATTERN = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


def parse_iso_duration(value: Optional[str]) -> int:
    """Convert ``PT#H#M#S`` to whole seconds; unparseable input yields 0."""
    if not value:
        return 0
    match = ISO_DURATION_PATTERN.search(value)
    if not match:
        return 0
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def is_sentinel_item(item: Dict[str, Any]) -> bool:
    title = (item.get("snippet") or {}).get("title")
    return title in SENTINEL_TITLES


class YouTubeClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        base_url: str = API_BASE,
    ):
        self.api_key = api_key if api_key is not None else settings.youtube_api_key()
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")

    def _get(self, path: str, params: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        if not self.api_key:
            raise UpstreamError("YOUTUBE_API_KEY not set")
        query = dict(params)
        query["key"] = self.api_key
        try:
            resp = self.session.get(f"{self.base_url}/{path}", params=query, timeout=timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise UpstreamError(f"{path} returned HTTP {status}", status_code=status) from exc
        except requests.RequestException as exc:
            raise UpstreamError(f"{path} request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"{path} returned invalid JSON") from exc

    def list_playlist_page(
        self, playlist_id: str, page_token: Optional[str] = None, timeout: float = 15.0
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Return one page of raw playlist items and the next page token."""
        params: Dict[str, Any] = {
            "part": "snippet",
            "maxResults": PAGE_SIZE,
            "playlistId": playlist_id,
        }
        if page_token:
            params["pageToken"] = page_token
        data = self._get("playlistItems", params, timeout)
        return data.get("items") or [], data.get("nextPageToken") or None

    def video_durations(self, video_ids: Iterable[str], timeout: float = 15.0) -> Dict[str, int]:
        """Look up durations in batches of 50 ids. Failed batches are skipped."""
        ids = [vid for vid in video_ids if vid]
        durations: Dict[str, int] = {}
        for start in range(0, len(ids), DURATION_BATCH_SIZE):
            batch = ids[start:start + DURATION_BATCH_SIZE]
            try:
                data = self._get(
                    "videos",
                    {"part": "contentDetails", "id": ",".join(batch)},
                    timeout,
                )
            except UpstreamError as exc:
                LOGGER.warning("Duration lookup failed for batch of %d: %s", len(batch), exc)
                continue
            for item in data.get("items") or []:
                details = item.get("contentDetails") or {}
                durations[item.get("id")] = parse_iso_duration(details.get("duration"))
        return durations

    def playlist_details(self, playlist_id: str, timeout: float = 10.0) -> Optional[Dict[str, Any]]:
        """Return ``{"videoCount", "playlistName"}`` or None if missing/private."""
        data = self._get(
            "playlists",
            {"part": "contentDetails,snippet", "id": playlist_id},
            timeout,
        )
        items = data.get("items") or []
        if not items:
            return None
        playlist = items[0]
        return {
            "videoCount": (playlist.get("contentDetails") or {}).get("itemCount", 0),
            "playlistName": (playlist.get("snippet") or {}).get("title", ""),
        }
