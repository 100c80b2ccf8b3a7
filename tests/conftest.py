"""Pytest configuration and shared fixtures."""

import os
import random
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

# Set test environment variables before importing modules
os.environ["VIDBLOCK_CHANNELS_CONFIG"] = str(
    Path(__file__).parent / "fixtures" / "test_channels.json"
)
os.environ["VIDBLOCK_PREFETCH"] = "false"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("IMVDB_API_KEY", None)

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from vidblock import runtime as runtime_module
from vidblock import settings
from vidblock.catalog_store import CatalogStore
from vidblock.errors import UpstreamError
from vidblock.services import year_lookup
from vidblock.youtube_client import PAGE_SIZE


def make_item(video_id: str, title: str) -> Dict:
    """Build a raw playlist item the way the platform returns it."""
    return {"snippet": {"title": title, "resourceId": {"videoId": video_id}}}


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeYouTubeClient:
    """In-memory stand-in for YouTubeClient that records every call."""

    def __init__(self, api_key: Optional[str] = "test-key"):
        self.api_key = api_key
        self.playlists: Dict[str, List[Dict]] = {}
        self.durations: Dict[str, int] = {}
        self.failing: set = set()
        self.page_calls: List[Tuple[str, Optional[str]]] = []
        self.duration_calls: List[List[str]] = []

    def add_playlist(self, playlist_id: str, items: List[Dict]) -> None:
        self.playlists[playlist_id] = items

    def add_videos(self, playlist_id: str, prefix: str, count: int, duration: int = 200) -> List[str]:
        ids = [f"{prefix}{idx:02d}" for idx in range(count)]
        self.playlists[playlist_id] = [
            make_item(vid, f"Artist {vid} - Song {vid} (Official Music Video)") for vid in ids
        ]
        for vid in ids:
            self.durations[vid] = duration
        return ids

    def fetch_count(self, playlist_id: str) -> int:
        return sum(1 for pid, token in self.page_calls if pid == playlist_id and token is None)

    def list_playlist_page(self, playlist_id, page_token=None, timeout=15.0):
        self.page_calls.append((playlist_id, page_token))
        if playlist_id in self.failing or playlist_id not in self.playlists:
            raise UpstreamError("playlistItems returned HTTP 404", status_code=404)
        items = self.playlists[playlist_id]
        start = int(page_token or 0)
        page = items[start:start + PAGE_SIZE]
        next_start = start + PAGE_SIZE
        next_token = str(next_start) if next_start < len(items) else None
        return page, next_token

    def video_durations(self, video_ids, timeout=15.0):
        ids = list(video_ids)
        self.duration_calls.append(ids)
        return {vid: self.durations[vid] for vid in ids if vid in self.durations}

    def playlist_details(self, playlist_id, timeout=10.0):
        if playlist_id in self.failing:
            raise UpstreamError("playlists returned HTTP 500", status_code=500)
        items = self.playlists.get(playlist_id)
        if items is None:
            return None
        return {"videoCount": len(items), "playlistName": f"Playlist {playlist_id}"}


@pytest.fixture(autouse=True)
def reset_module_state():
    """Clear module-level caches between tests."""
    settings.invalidate_settings_cache()
    year_lookup.clear_cache()
    runtime_module.set_runtime(None)
    yield
    settings.invalidate_settings_cache()
    runtime_module.set_runtime(None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def item_factory():
    return make_item


@pytest.fixture
def empty_client() -> FakeYouTubeClient:
    return FakeYouTubeClient()


@pytest.fixture
def fake_client() -> FakeYouTubeClient:
    """A platform catalog matching tests/fixtures/test_channels.json."""
    client = FakeYouTubeClient()
    client.add_videos("PLrockAAAAAAAAAA1", "rockA", 20)
    client.add_videos("PLrockBBBBBBBBBB2", "rockB", 20)
    client.add_videos("PLjazzAAAAAAAAAA1", "jazzA", 15)
    client.add_videos("PLliveAAAAAAAAAA1", "liveA", 10)
    client.add_videos("PLliveBBBBBBBBBB2", "liveB", 10)
    client.add_videos("PLshowsAAAAAAAAA1", "showA", 5)
    client.add_videos("PLsecretAAAAAAAA1", "secretA", 8)
    client.add_playlist(
        "PLbumperAAAAAAAA1",
        [make_item(f"bump{idx}", f"Bumper {idx}") for idx in range(4)],
    )
    client.durations.update({"bump0": 30, "bump1": 45, "bump2": 60, "bump3": 200})
    return client


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


@pytest.fixture
def store(sqlite_engine, rng) -> CatalogStore:
    """In-memory catalog with the fixture channels seeded."""
    catalog = CatalogStore(sqlite_engine, rng=rng)
    catalog.create_schema()
    catalog.seed_channels(settings.list_channels())
    return catalog


@pytest.fixture
def api_runtime(fake_client):
    """Runtime wired to the fake platform client with no database."""
    runtime = runtime_module.build_runtime(
        client=fake_client, use_store=False, rng=random.Random(99)
    )
    runtime.fetcher.page_delay = 0
    runtime_module.set_runtime(runtime)
    return runtime


@pytest.fixture
def api_client(api_runtime):
    """Create a test client for the FastAPI app."""
    from fastapi.testclient import TestClient
    from vidblock.api.app import app

    return TestClient(app)
