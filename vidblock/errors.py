"""
Exception types shared by the fetch, store and assembly layers.
"""

from __future__ import annotations

from typing import List, Optional, Tuple


class VidblockError(Exception):
    """Base class for all service errors."""


class UpstreamError(VidblockError):
    """The video platform or metadata API failed or timed out."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SourceFetchError(VidblockError):
    def __init__(self, source_id: str, reason: str):
        super().__init__(f"Failed to fetch source {source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class ChannelNotFoundError(VidblockError):
    def __init__(self, channel_id: str):
        super().__init__(f"Channel not found: {channel_id}")
        self.channel_id = channel_id


class NoSourcesError(VidblockError):
    def __init__(self, channel_id: str):
        super().__init__(f"No playlists available for channel: {channel_id}")
        self.channel_id = channel_id


class BackendUnavailableError(VidblockError):
    """The relational store could not serve a query."""


class BlockAssemblyError(VidblockError):
    """Every configured backend failed to produce a block."""

    def __init__(self, channel_id: str, failures: List[Tuple[str, Exception]]):
        summary = "; ".join(f"{name}: {exc}" for name, exc in failures)
        super().__init__(f"Could not assemble block for {channel_id} ({summary})")
        self.channel_id = channel_id
        self.failures = failures
