"""
FastAPI application serving channel blocks.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from vidblock import settings
from vidblock.errors import (
    BlockAssemblyError,
    ChannelNotFoundError,
    NoSourcesError,
    UpstreamError,
    VidblockError,
)
from vidblock.runtime import get_runtime
from vidblock.services import year_lookup

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    runtime = get_runtime()
    if settings.prefetch_enabled():
        runtime.warmer.start_background()
    else:
        LOGGER.info("Startup prefetch disabled")
    yield


app = FastAPI(title="Channel Block API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)


class NextBlockRequest(BaseModel):
    excludeIds: List[str] = Field(default_factory=list, description="Video ids already played.")
    excludePlaylistIds: List[Union[int, str]] = Field(
        default_factory=list, description="Playlist ids already used for recent blocks."
    )
    customPlaylistIds: List[str] = Field(default_factory=list)
    preferCustom: bool = False
    blend: bool = False


class UnavailableReport(BaseModel):
    errorCode: Optional[Union[int, str]] = None
    isLimited: bool = False


def _split_ids(raw: Optional[str]) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def _serve_block(channel_id: str, **kwargs: Any) -> Dict[str, Any]:
    try:
        block = get_runtime().assembler.get_next_block(channel_id, **kwargs)
    except ChannelNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except NoSourcesError as exc:
        LOGGER.error("No sources for channel %s", channel_id)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except BlockAssemblyError as exc:
        LOGGER.error("Block assembly failed: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to build channel block") from exc
    return block.to_dict()


@app.get("/health")
def health_check() -> Dict[str, Any]:
    runtime = get_runtime()
    database = "disabled"
    if runtime.store is not None:
        try:
            runtime.store.health_check()
            database = "connected"
        except VidblockError as exc:
            LOGGER.warning("Database health check failed: %s", exc)
            database = "unavailable"
    return {"status": "OK", "message": "Channel block backend is running", "database": database}


@app.get("/api/ready")
def readiness() -> Dict[str, Any]:
    return get_runtime().warmer.status()


@app.get("/api/channels")
def get_channels() -> List[Dict[str, Any]]:
    warmer = get_runtime().warmer
    return [
        {
            "id": channel["id"],
            "name": channel["name"],
            "icon": channel["icon"],
            "kind": channel["kind"],
            "blockSize": channel["block_size"],
        }
        for channel in settings.list_channels()
        if not channel["unlockable"] or warmer.is_unlocked(channel["id"])
    ]


@app.get("/api/channel/{channel_id}")
def get_channel_block(
    channel_id: str,
    custom: Optional[str] = Query(None, description="Comma-separated custom playlist ids."),
    blend: Optional[bool] = Query(None, description="Defaults to blending when custom ids are given."),
    preferCustom: bool = Query(False),
) -> Dict[str, Any]:
    custom_ids = _split_ids(custom)
    if blend is None:
        blend = bool(custom_ids) and not preferCustom
    LOGGER.info(
        "Fetching channel %s with %d custom playlist(s) (blend=%s)", channel_id, len(custom_ids), blend
    )
    return _serve_block(
        channel_id, custom_source_ids=custom_ids, blend=blend, prefer_custom=preferCustom
    )


@app.post("/api/channel/{channel_id}/next")
def get_next_channel_block(channel_id: str, body: NextBlockRequest) -> Dict[str, Any]:
    LOGGER.info(
        "Fetching next block for %s: excluding %d video(s), %d playlist(s), %d custom",
        channel_id, len(body.excludeIds), len(body.excludePlaylistIds), len(body.customPlaylistIds),
    )
    return _serve_block(
        channel_id,
        custom_source_ids=body.customPlaylistIds,
        exclude_source_ids=[str(pid) for pid in body.excludePlaylistIds],
        exclude_item_ids=body.excludeIds,
        prefer_custom=body.preferCustom,
        blend=body.blend,
    )


@app.post("/api/channel/{channel_id}/unlock")
def unlock_channel(channel_id: str) -> Dict[str, Any]:
    try:
        return get_runtime().warmer.unlock(channel_id)
    except ChannelNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/video/{video_id}/unavailable")
def report_unavailable(
    video_id: str, background_tasks: BackgroundTasks, report: Optional[UnavailableReport] = None
) -> Dict[str, Any]:
    report = report or UnavailableReport()
    if report.isLimited:
        # Region-limited videos fail for some viewers by nature; no accounting
        LOGGER.info("Ignoring unavailable report for region-limited video %s", video_id)
        return {"success": True, "recorded": False}

    error_code = str(report.errorCode) if report.errorCode is not None else None
    background_tasks.add_task(get_runtime().tracker.report, video_id, error_code)
    return {"success": True, "recorded": True}


def _store_year(video_id: str, year: int) -> None:
    store = get_runtime().store
    if store is None:
        return
    try:
        store.update_video_year(video_id, year)
    except VidblockError as exc:
        LOGGER.warning("Could not persist year for %s: %s", video_id, exc)


@app.get("/api/video/year")
def get_video_year(
    background_tasks: BackgroundTasks,
    title: Optional[str] = Query(None),
    videoId: Optional[str] = Query(None),
) -> Dict[str, Any]:
    if not title:
        raise HTTPException(status_code=400, detail="Title parameter is required")
    year = year_lookup.lookup_year(title)
    if year and videoId:
        background_tasks.add_task(_store_year, videoId, year)
    return {"year": year}


@app.get("/api/validate-playlist/{playlist_id}")
def validate_playlist(playlist_id: str) -> Dict[str, Any]:
    if not settings.is_valid_playlist_id(playlist_id):
        raise HTTPException(status_code=400, detail="Invalid playlist ID format")
    client = get_runtime().fetcher.client
    if not client.api_key:
        raise HTTPException(status_code=500, detail="YouTube API key not configured")
    try:
        details = client.playlist_details(playlist_id)
    except UpstreamError as exc:
        LOGGER.error("Error validating playlist %s: %s", playlist_id, exc)
        raise HTTPException(status_code=500, detail="Failed to validate playlist") from exc
    if details is None:
        raise HTTPException(status_code=404, detail="Playlist not found or is private")
    return details
