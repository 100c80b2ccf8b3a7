"""
Administrative commands for the relational channel catalog.

    python scripts/catalog/catalog_admin.py init-db
    python scripts/catalog/catalog_admin.py add-playlist <url-or-id> "<name>" rock,1990s
    python scripts/catalog/catalog_admin.py merge-playlists <source-id> <target-id>
    python scripts/catalog/catalog_admin.py import-catalog
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from vidblock import settings
from vidblock.bumper_pool import BumperRepository
from vidblock.catalog_store import CatalogStore
from vidblock.errors import VidblockError
from vidblock.models import Video
from vidblock.source_fetcher import SourceFetcher
from vidblock.titles import extract_playlist_id

LOGGER = logging.getLogger("catalog_admin")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage the channel catalog database.")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy database URL (defaults to $DATABASE_URL)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create tables and seed channels")

    add = subparsers.add_parser("add-playlist", help="Import a platform playlist")
    add.add_argument("playlist", help="Playlist URL or id")
    add.add_argument("name", help="Playlist name in the catalog")
    add.add_argument("channels", help="Comma-separated channel ids")
    add.add_argument("--description", default=None)

    merge = subparsers.add_parser("merge-playlists", help="Merge one playlist into another")
    merge.add_argument("source", type=int, help="Playlist id to merge (deleted afterwards)")
    merge.add_argument("target", type=int, help="Playlist id receiving the videos")

    subparsers.add_parser("import-catalog", help="Import every configured playlist and bumper")

    return parser.parse_args(argv)


def _fetch_with_durations(fetcher: SourceFetcher, playlist_id: str, channel_hint: Optional[str]) -> List[Video]:
    videos = fetcher.fetch(playlist_id, channel_hint=channel_hint, strict=True)
    durations = fetcher.client.video_durations([video.id for video in videos])
    for video in videos:
        video.duration = durations.get(video.id) or None
    return videos


def _store_playlist(store: CatalogStore, playlist_id: int, videos: Sequence[Video]) -> int:
    added = 0
    for position, video in enumerate(videos):
        if store.add_video_to_playlist(playlist_id, video, position=position):
            added += 1
    return added


def init_db(store: CatalogStore) -> int:
    store.create_schema()
    added = store.seed_channels(settings.list_channels())
    print(f"Schema ready; {added} channel(s) added")
    return 0


def add_playlist(
    store: CatalogStore,
    fetcher: SourceFetcher,
    playlist: str,
    name: str,
    channels: str,
    description: Optional[str] = None,
) -> int:
    platform_id = extract_playlist_id(playlist)
    channel_ids = [cid.strip() for cid in channels.split(",") if cid.strip()]
    if not channel_ids:
        print("At least one channel id is required", file=sys.stderr)
        return 2

    print(f"Fetching playlist {platform_id}...")
    videos = _fetch_with_durations(fetcher, platform_id, channel_ids[0])
    print(f"Found {len(videos)} video(s)")

    playlist_id = store.create_playlist(name, description, channel_ids)
    added = _store_playlist(store, playlist_id, videos)
    print(f"Playlist {name!r} (id {playlist_id}): {added} new, {len(videos) - added} already present")
    return 0


def merge_playlists(store: CatalogStore, source: int, target: int) -> int:
    try:
        result = store.merge_playlists(source, target)
    except (KeyError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(
        f"Moved {result['moved']} video(s) ({result['duplicates']} duplicate(s) skipped), "
        f"linked {result['channels_linked']} channel(s); target now has {result['final_count']} video(s)"
    )
    return 0


def import_catalog(store: CatalogStore, fetcher: SourceFetcher) -> int:
    store.create_schema()
    store.seed_channels(settings.list_channels())

    failures = 0
    for channel in settings.list_channels():
        labels = channel.get("playlist_labels", {})
        for platform_id in channel.get("playlists", []):
            label = labels.get(platform_id) or platform_id
            try:
                videos = _fetch_with_durations(fetcher, platform_id, channel["id"])
            except VidblockError as exc:
                LOGGER.warning("Skipping %s (%s): %s", platform_id, channel["id"], exc)
                failures += 1
                continue
            playlist_id = store.create_playlist(label, channel_ids=[channel["id"]])
            added = _store_playlist(store, playlist_id, videos)
            print(f"[{channel['id']}] {label}: {added} new video(s)")

    bumpers = BumperRepository(fetcher=fetcher).refresh()
    new_bumpers = sum(1 for bumper in bumpers if store.add_bumper(bumper.id, bumper.title, bumper.duration))
    print(f"Bumpers: {new_bumpers} new of {len(bumpers)}")
    if failures:
        print(f"{failures} playlist(s) could not be fetched", file=sys.stderr)
    return 1 if failures else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    url = args.database_url or settings.database_url()
    if not url:
        print("DATABASE_URL is not set", file=sys.stderr)
        return 2
    store = CatalogStore.from_url(url)

    try:
        if args.command == "init-db":
            return init_db(store)
        if args.command == "merge-playlists":
            return merge_playlists(store, args.source, args.target)

        fetcher = SourceFetcher()
        if args.command == "add-playlist":
            return add_playlist(store, fetcher, args.playlist, args.name, args.channels, args.description)
        return import_catalog(store, fetcher)
    except (VidblockError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
