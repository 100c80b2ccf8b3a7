"""
Plain data types passed between the fetch, mixing and assembly layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class SuppressionState(str, Enum):
    OK = "ok"
    SUPPRESSED = "suppressed"
    REGION_LIMITED = "region_limited"


@dataclass
class Video:
    """A playable item drawn from a source."""

    id: str
    title: str
    artist: Optional[str] = None
    song: Optional[str] = None
    duration: Optional[int] = None
    year: Optional[int] = None
    is_limited: bool = False
    playlist_id: Optional[str] = None

    is_bumper = False

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "title": self.title}
        if self.artist is not None:
            payload["artist"] = self.artist
        if self.song is not None:
            payload["song"] = self.song
        if self.year is not None:
            payload["year"] = self.year
        if self.is_limited:
            payload["isLimited"] = True
        payload["isBumper"] = False
        return payload


@dataclass
class Bumper:
    """A short interstitial clip shared across all channels."""

    id: str
    title: str
    duration: Optional[int] = None

    is_bumper = True

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "isBumper": True}


Entry = Union[Video, Bumper]


@dataclass(frozen=True)
class SourceRef:
    """A playlist a block can be drawn from."""

    id: str
    label: str = ""
    channel_id: Optional[str] = None
    is_custom: bool = False


@dataclass
class WorkingSet:
    """Ordered items chosen for one block before bumpers are added."""

    items: List[Video]
    source_label: str
    source_id: str


@dataclass
class Block:
    playlist_label: str
    playlist_id: str
    items: List[Entry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playlistLabel": self.playlist_label,
            "playlistId": self.playlist_id,
            "items": [entry.to_dict() for entry in self.items],
        }


@dataclass
class AvailabilityRecord:
    video_id: str
    count: int = 0
    last_reported_at: Optional[datetime] = None
    state: SuppressionState = SuppressionState.OK
    reason: Optional[str] = None
