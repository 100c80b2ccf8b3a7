"""
Title cleanup and artist/song parsing for platform video titles.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

OFFICIAL_MUSIC_VIDEO_PATTERN = re.compile(
    r"[\(\[\{][^\)\]\}]*Official\s+Music\s+Video[^\)\]\}]*[\)\]\}]", re.IGNORECASE
)
OFFICIAL_VIDEO_PATTERN = re.compile(
    r"[\(\[\{][^\)\]\}]*Official\s+Video[^\)\]\}]*[\)\]\}]", re.IGNORECASE
)
HD_TAG_PATTERN = re.compile(r"\[HD\]", re.IGNORECASE)

TITLE_SEPARATOR = " - "
NO_SPLIT_CONTEXTS = {"live", "bumper"}

PLAYLIST_URL_PATTERN = re.compile(r"[?&]list=([a-zA-Z0-9_-]+)")
VIDEO_URL_PATTERNS = (
    re.compile(r"[?&]v=([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtu\.be/([a-zA-Z0-9_-]{11})"),
    re.compile(r"/(?:embed|shorts)/([a-zA-Z0-9_-]{11})"),
)
BARE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def clean_title(title: str) -> str:
    cleaned = OFFICIAL_MUSIC_VIDEO_PATTERN.sub("", title or "")
    cleaned = OFFICIAL_VIDEO_PATTERN.sub("", cleaned)
    cleaned = HD_TAG_PATTERN.sub("", cleaned)
    return cleaned.strip()


def parse_title(
    title: str, channel_hint: Optional[str] = None
) -> Tuple[str, Optional[str], Optional[str]]:
    """
    Split a cleaned title into ``(title, artist, song)``.

    Only the first " - " splits; anything after it belongs to the song. Live
    performances and bumpers keep their title whole.
    """
    title = title.strip()
    if channel_hint in NO_SPLIT_CONTEXTS:
        return title, None, None

    separator_index = title.find(TITLE_SEPARATOR)
    if separator_index > 0:
        artist = title[:separator_index].strip()
        song = title[separator_index + len(TITLE_SEPARATOR):].strip()
        return title, artist, song
    return title, None, None


def extract_playlist_id(value: str) -> str:
    """Pull a playlist id out of a share URL, or accept a bare id."""
    value = value.strip()
    match = PLAYLIST_URL_PATTERN.search(value)
    if match:
        return match.group(1)
    if BARE_ID_PATTERN.match(value):
        return value
    raise ValueError(f"Could not extract playlist ID from {value!r}")


def extract_video_id(value: str) -> str:
    value = value.strip()
    for pattern in VIDEO_URL_PATTERNS:
        match = pattern.search(value)
        if match:
            return match.group(1)
    if BARE_ID_PATTERN.match(value):
        return value
    raise ValueError(f"Could not extract video ID from {value!r}")
