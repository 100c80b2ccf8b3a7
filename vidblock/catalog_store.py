"""
Relational catalog store: channels, playlists, videos and bumpers.

Every query primitive raises BackendUnavailableError when the database
cannot serve it, so callers can fall back to the platform-backed path.
"""

from __future__ import annotations

import logging
import random
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from . import settings
from .errors import BackendUnavailableError
from .models import AvailabilityRecord, Bumper, SourceRef, SuppressionState, Video
from .playlist_cache import PlaylistCache

LOGGER = logging.getLogger(__name__)

SUPPRESSED_CACHE_KEY = "videos:suppressed"

metadata = MetaData()

channels_table = Table(
    "channels",
    metadata,
    Column("id", String(50), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("icon", String(10)),
    Column("is_easter_egg", Boolean, default=False),
    Column("created_at", DateTime, server_default=func.now()),
)

playlists_table = Table(
    "playlists",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
)

channel_playlists_table = Table(
    "channel_playlists",
    metadata,
    Column("channel_id", String(50), ForeignKey("channels.id", ondelete="CASCADE"), primary_key=True),
    Column("playlist_id", Integer, ForeignKey("playlists.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime, server_default=func.now()),
)

videos_table = Table(
    "videos",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("youtube_video_id", String(50), unique=True, nullable=False, index=True),
    Column("title", String(500), nullable=False),
    Column("artist", String(255)),
    Column("song", String(255)),
    Column("duration_seconds", Integer),
    Column("year", Integer),
    Column("is_flagged", Boolean, default=False, nullable=False),
    Column("flag_reason", Text),
    Column("unavailable_count", Integer, default=0, nullable=False),
    Column("last_unavailable_at", DateTime),
    Column("is_limited", Boolean, default=False, nullable=False),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
)

playlist_videos_table = Table(
    "playlist_videos",
    metadata,
    Column("playlist_id", Integer, ForeignKey("playlists.id", ondelete="CASCADE"), primary_key=True),
    Column("video_id", Integer, ForeignKey("videos.id", ondelete="CASCADE"), primary_key=True),
    Column("position", Integer),
    Column("created_at", DateTime, server_default=func.now()),
)

bumpers_table = Table(
    "bumpers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("youtube_video_id", String(50), unique=True, nullable=False),
    Column("title", String(500), nullable=False),
    Column("duration_seconds", Integer, nullable=False),
    Column("created_at", DateTime, server_default=func.now()),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _int_ids(values: Iterable[Any]) -> List[int]:
    ids: List[int] = []
    for value in values:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            continue
    return ids


def _row_to_video(row: Any) -> Video:
    return Video(
        id=row.youtube_video_id,
        title=row.title,
        artist=row.artist,
        song=row.song,
        duration=row.duration_seconds,
        year=row.year,
        is_limited=bool(row.is_limited),
        playlist_id=str(row.playlist_id) if getattr(row, "playlist_id", None) is not None else None,
    )


class CatalogStore:
    def __init__(
        self,
        engine: Engine,
        cache: Optional[PlaylistCache] = None,
        rng: Optional[random.Random] = None,
    ):
        self.engine = engine
        self.cache = cache or PlaylistCache(settings.STORE_PLAYLISTS_TTL)
        self.bumper_cache = PlaylistCache(settings.BUMPER_CACHE_TTL)
        self.rng = rng or random.Random()

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "CatalogStore":
        engine_args: Dict[str, Any] = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
        elif url.startswith("postgresql"):
            engine_args.update(
                pool_size=20, pool_timeout=10, connect_args={"connect_timeout": 2}
            )
        engine = create_engine(url, **engine_args)
        LOGGER.info("Database engine initialized for %s", engine.url.render_as_string(hide_password=True))
        return cls(engine, **kwargs)

    @contextmanager
    def _connect(self, write: bool = False) -> Iterator[Connection]:
        try:
            with (self.engine.begin() if write else self.engine.connect()) as conn:
                yield conn
        except SQLAlchemyError as exc:
            raise BackendUnavailableError(f"Database error: {exc}") from exc

    def clear_cache(self, prefix: Optional[str] = None) -> None:
        self.cache.clear(prefix)
        if prefix is None or prefix.startswith("bumpers:"):
            self.bumper_cache.clear()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def create_schema(self) -> None:
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise BackendUnavailableError(f"Database error: {exc}") from exc

    def health_check(self) -> bool:
        with self._connect() as conn:
            conn.execute(select(1)).scalar()
        return True

    # ------------------------------------------------------------------
    # Channels and playlists
    # ------------------------------------------------------------------

    def list_channels(self) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                select(
                    channels_table.c.id,
                    channels_table.c.name,
                    channels_table.c.icon,
                    channels_table.c.is_easter_egg,
                ).order_by(channels_table.c.id)
            ).all()
        return [
            {"id": row.id, "name": row.name, "icon": row.icon, "is_easter_egg": bool(row.is_easter_egg)}
            for row in rows
        ]

    def seed_channels(self, channels: Sequence[Dict[str, Any]]) -> int:
        """Insert missing channels from the catalog config. Returns the number added."""
        added = 0
        with self._connect(write=True) as conn:
            existing = set(conn.execute(select(channels_table.c.id)).scalars())
            for channel in channels:
                if channel["id"] in existing:
                    continue
                conn.execute(
                    insert(channels_table).values(
                        id=channel["id"],
                        name=channel.get("name") or channel["id"],
                        icon=channel.get("icon") or None,
                        is_easter_egg=bool(channel.get("unlockable", False)),
                    )
                )
                added += 1
        return added

    def _channel_playlists_query(self, channel_id: str):
        return (
            select(playlists_table.c.id, playlists_table.c.name)
            .select_from(
                playlists_table.join(
                    channel_playlists_table,
                    playlists_table.c.id == channel_playlists_table.c.playlist_id,
                )
            )
            .where(channel_playlists_table.c.channel_id == channel_id)
        )

    def playlists_for_channel(self, channel_id: str) -> List[SourceRef]:
        cache_key = f"playlists:channel:{channel_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        with self._connect() as conn:
            rows = conn.execute(
                self._channel_playlists_query(channel_id).order_by(playlists_table.c.id)
            ).all()
        refs = [SourceRef(id=str(row.id), label=row.name, channel_id=channel_id) for row in rows]
        self.cache.put(cache_key, refs)
        return list(refs)

    def random_playlist_for_channel(
        self, channel_id: str, exclude_playlist_ids: Iterable[Any] = ()
    ) -> Optional[SourceRef]:
        """
        Pick a random playlist of the channel, skipping excluded ids. When the
        exclusions leave nothing, pick again from the full set.
        """
        excluded = _int_ids(exclude_playlist_ids)
        base = self._channel_playlists_query(channel_id)
        with self._connect() as conn:
            query = base
            if excluded:
                query = query.where(playlists_table.c.id.notin_(excluded))
            row = conn.execute(query.order_by(func.random()).limit(1)).first()
            if row is None and excluded:
                LOGGER.info("All playlists for %s excluded; resetting exclusions", channel_id)
                row = conn.execute(base.order_by(func.random()).limit(1)).first()
        if row is None:
            return None
        return SourceRef(id=str(row.id), label=row.name, channel_id=channel_id)

    def playlist_label(self, playlist_id: Any) -> Optional[str]:
        ids = _int_ids([playlist_id])
        if not ids:
            return None
        with self._connect() as conn:
            return conn.execute(
                select(playlists_table.c.name).where(playlists_table.c.id == ids[0])
            ).scalar()

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    def videos_for_playlist(
        self,
        playlist_id: Any,
        limit: Optional[int] = None,
        exclude_video_ids: Iterable[str] = (),
    ) -> List[Video]:
        """Unflagged videos of a playlist in random order."""
        ids = _int_ids([playlist_id])
        if not ids:
            return []
        excluded = [vid for vid in exclude_video_ids if vid]
        query = (
            select(
                videos_table.c.youtube_video_id,
                videos_table.c.title,
                videos_table.c.artist,
                videos_table.c.song,
                videos_table.c.duration_seconds,
                videos_table.c.year,
                videos_table.c.is_limited,
                playlist_videos_table.c.playlist_id,
            )
            .select_from(
                videos_table.join(
                    playlist_videos_table, videos_table.c.id == playlist_videos_table.c.video_id
                )
            )
            .where(
                and_(
                    playlist_videos_table.c.playlist_id == ids[0],
                    videos_table.c.is_flagged.is_(False),
                )
            )
        )
        if excluded:
            query = query.where(videos_table.c.youtube_video_id.notin_(excluded))
        query = query.order_by(func.random())
        if limit:
            query = query.limit(int(limit))

        with self._connect() as conn:
            rows = conn.execute(query).all()
        return [_row_to_video(row) for row in rows]

    def suppressed_video_ids(self) -> List[str]:
        cached = self.cache.get(SUPPRESSED_CACHE_KEY)
        if cached is not None:
            return list(cached)
        with self._connect() as conn:
            ids = list(
                conn.execute(
                    select(videos_table.c.youtube_video_id).where(videos_table.c.is_flagged.is_(True))
                ).scalars()
            )
        self.cache.put(SUPPRESSED_CACHE_KEY, ids)
        return list(ids)

    def get_availability(self, video_id: str) -> Optional[AvailabilityRecord]:
        with self._connect() as conn:
            row = conn.execute(
                select(
                    videos_table.c.unavailable_count,
                    videos_table.c.last_unavailable_at,
                    videos_table.c.is_flagged,
                    videos_table.c.is_limited,
                    videos_table.c.flag_reason,
                ).where(videos_table.c.youtube_video_id == video_id)
            ).first()
        if row is None:
            return None
        if row.is_flagged:
            state = SuppressionState.SUPPRESSED
        elif row.is_limited:
            state = SuppressionState.REGION_LIMITED
        else:
            state = SuppressionState.OK
        return AvailabilityRecord(
            video_id=video_id,
            count=row.unavailable_count or 0,
            last_reported_at=row.last_unavailable_at,
            state=state,
            reason=row.flag_reason,
        )

    def save_availability(self, record: AvailabilityRecord) -> None:
        values: Dict[str, Any] = {
            "unavailable_count": record.count,
            "last_unavailable_at": record.last_reported_at,
            "updated_at": _utcnow(),
        }
        if record.state == SuppressionState.SUPPRESSED:
            values["is_flagged"] = True
            values["flag_reason"] = record.reason
        with self._connect(write=True) as conn:
            conn.execute(
                update(videos_table)
                .where(videos_table.c.youtube_video_id == record.video_id)
                .values(**values)
            )
        if record.state == SuppressionState.SUPPRESSED:
            self.cache.invalidate(SUPPRESSED_CACHE_KEY)

    def flag_video(self, video_id: str, reason: Optional[str] = None) -> None:
        self._update_video(video_id, is_flagged=True, flag_reason=reason)
        self.cache.invalidate(SUPPRESSED_CACHE_KEY)

    def unflag_video(self, video_id: str) -> None:
        self._update_video(video_id, is_flagged=False, flag_reason=None)
        self.cache.invalidate(SUPPRESSED_CACHE_KEY)

    def set_limited(self, video_id: str, limited: bool = True) -> None:
        self._update_video(video_id, is_limited=bool(limited))

    def update_video_year(self, video_id: str, year: int) -> None:
        self._update_video(video_id, year=year)

    def _update_video(self, video_id: str, **values: Any) -> None:
        values["updated_at"] = _utcnow()
        with self._connect(write=True) as conn:
            conn.execute(
                update(videos_table).where(videos_table.c.youtube_video_id == video_id).values(**values)
            )

    def upsert_video(self, video: Video, conn: Optional[Connection] = None) -> int:
        """Insert a video if its platform id is new. Returns the row id."""
        if conn is None:
            with self._connect(write=True) as own_conn:
                return self.upsert_video(video, own_conn)

        existing = conn.execute(
            select(videos_table.c.id).where(videos_table.c.youtube_video_id == video.id)
        ).scalar()
        if existing is not None:
            return existing
        result = conn.execute(
            insert(videos_table).values(
                youtube_video_id=video.id,
                title=video.title,
                artist=video.artist,
                song=video.song,
                duration_seconds=video.duration,
                year=video.year,
                is_flagged=False,
                unavailable_count=0,
                is_limited=bool(video.is_limited),
            )
        )
        return result.inserted_primary_key[0]

    def add_video_to_playlist(
        self, playlist_id: int, video: Video, position: Optional[int] = None
    ) -> bool:
        """Link a video to a playlist, creating the video if needed. True if newly linked."""
        with self._connect(write=True) as conn:
            video_row_id = self.upsert_video(video, conn)
            linked = conn.execute(
                select(playlist_videos_table.c.video_id).where(
                    and_(
                        playlist_videos_table.c.playlist_id == playlist_id,
                        playlist_videos_table.c.video_id == video_row_id,
                    )
                )
            ).first()
            if linked is not None:
                if position is not None:
                    conn.execute(
                        update(playlist_videos_table)
                        .where(
                            and_(
                                playlist_videos_table.c.playlist_id == playlist_id,
                                playlist_videos_table.c.video_id == video_row_id,
                            )
                        )
                        .values(position=position)
                    )
                return False
            conn.execute(
                insert(playlist_videos_table).values(
                    playlist_id=playlist_id, video_id=video_row_id, position=position
                )
            )
        self.clear_cache("playlists:")
        return True

    def check_videos_existence(self, video_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        """Map each platform id to whether it exists and which playlists hold it."""
        found: Dict[str, Dict[str, Any]] = {vid: {"exists": False, "playlists": []} for vid in video_ids}
        if not video_ids:
            return found
        query = (
            select(
                videos_table.c.youtube_video_id,
                videos_table.c.title,
                playlists_table.c.id.label("playlist_id"),
                playlists_table.c.name.label("playlist_name"),
                channel_playlists_table.c.channel_id,
            )
            .select_from(
                videos_table.outerjoin(
                    playlist_videos_table, videos_table.c.id == playlist_videos_table.c.video_id
                )
                .outerjoin(playlists_table, playlist_videos_table.c.playlist_id == playlists_table.c.id)
                .outerjoin(
                    channel_playlists_table,
                    playlists_table.c.id == channel_playlists_table.c.playlist_id,
                )
            )
            .where(videos_table.c.youtube_video_id.in_(list(video_ids)))
        )
        with self._connect() as conn:
            rows = conn.execute(query).all()
        for row in rows:
            entry = found[row.youtube_video_id]
            entry["exists"] = True
            entry["title"] = row.title
            if row.playlist_id is not None:
                entry["playlists"].append(
                    {"id": row.playlist_id, "name": row.playlist_name, "channelId": row.channel_id}
                )
        return found

    # ------------------------------------------------------------------
    # Playlist administration
    # ------------------------------------------------------------------

    def create_playlist(
        self, name: str, description: Optional[str] = None, channel_ids: Iterable[str] = ()
    ) -> int:
        """Create a playlist (or reuse one with the same name) and link it to channels."""
        with self._connect(write=True) as conn:
            playlist_id = conn.execute(
                select(playlists_table.c.id).where(playlists_table.c.name == name)
            ).scalar()
            if playlist_id is None:
                playlist_id = conn.execute(
                    insert(playlists_table).values(name=name, description=description)
                ).inserted_primary_key[0]
                LOGGER.info("Created playlist %r (id %s)", name, playlist_id)
        for channel_id in channel_ids:
            self.link_playlist_to_channel(playlist_id, channel_id)
        self.clear_cache("playlists:")
        return playlist_id

    def link_playlist_to_channel(self, playlist_id: int, channel_id: str) -> bool:
        with self._connect(write=True) as conn:
            channel = conn.execute(
                select(channels_table.c.id).where(channels_table.c.id == channel_id)
            ).scalar()
            if channel is None:
                LOGGER.warning("Channel %s not found, skipping link", channel_id)
                return False
            linked = conn.execute(
                select(channel_playlists_table.c.playlist_id).where(
                    and_(
                        channel_playlists_table.c.channel_id == channel_id,
                        channel_playlists_table.c.playlist_id == playlist_id,
                    )
                )
            ).first()
            if linked is not None:
                return False
            conn.execute(
                insert(channel_playlists_table).values(channel_id=channel_id, playlist_id=playlist_id)
            )
        self.clear_cache("playlists:")
        return True

    def merge_playlists(self, source_id: int, target_id: int) -> Dict[str, int]:
        """Move videos and channel links from ``source_id`` into ``target_id``, then drop the source."""
        if source_id == target_id:
            raise ValueError("Source and target playlist IDs must be different")

        with self._connect(write=True) as conn:
            for playlist_id in (source_id, target_id):
                exists = conn.execute(
                    select(playlists_table.c.id).where(playlists_table.c.id == playlist_id)
                ).scalar()
                if exists is None:
                    raise KeyError(f"Playlist {playlist_id} not found")

            target_videos = set(
                conn.execute(
                    select(playlist_videos_table.c.video_id).where(
                        playlist_videos_table.c.playlist_id == target_id
                    )
                ).scalars()
            )
            source_rows = conn.execute(
                select(playlist_videos_table.c.video_id, playlist_videos_table.c.position).where(
                    playlist_videos_table.c.playlist_id == source_id
                )
            ).all()
            moved = 0
            for row in source_rows:
                if row.video_id in target_videos:
                    continue
                conn.execute(
                    insert(playlist_videos_table).values(
                        playlist_id=target_id, video_id=row.video_id, position=row.position
                    )
                )
                moved += 1

            target_channels = set(
                conn.execute(
                    select(channel_playlists_table.c.channel_id).where(
                        channel_playlists_table.c.playlist_id == target_id
                    )
                ).scalars()
            )
            source_channels = conn.execute(
                select(channel_playlists_table.c.channel_id).where(
                    channel_playlists_table.c.playlist_id == source_id
                )
            ).scalars().all()
            linked = 0
            for channel_id in source_channels:
                if channel_id in target_channels:
                    continue
                conn.execute(
                    insert(channel_playlists_table).values(channel_id=channel_id, playlist_id=target_id)
                )
                linked += 1

            conn.execute(delete(playlist_videos_table).where(playlist_videos_table.c.playlist_id == source_id))
            conn.execute(
                delete(channel_playlists_table).where(channel_playlists_table.c.playlist_id == source_id)
            )
            conn.execute(delete(playlists_table).where(playlists_table.c.id == source_id))

            final_count = conn.execute(
                select(func.count()).select_from(playlist_videos_table).where(
                    playlist_videos_table.c.playlist_id == target_id
                )
            ).scalar()

        self.clear_cache("playlists:")
        return {
            "moved": moved,
            "duplicates": len(source_rows) - moved,
            "channels_linked": linked,
            "final_count": final_count or 0,
        }

    # ------------------------------------------------------------------
    # Bumpers
    # ------------------------------------------------------------------

    def all_bumpers(self) -> List[Bumper]:
        cached = self.bumper_cache.get("bumpers:all")
        if cached is not None:
            return list(cached)
        with self._connect() as conn:
            rows = conn.execute(
                select(
                    bumpers_table.c.youtube_video_id,
                    bumpers_table.c.title,
                    bumpers_table.c.duration_seconds,
                ).order_by(bumpers_table.c.id)
            ).all()
        bumpers = [
            Bumper(id=row.youtube_video_id, title=row.title, duration=row.duration_seconds)
            for row in rows
        ]
        self.bumper_cache.put("bumpers:all", bumpers)
        return list(bumpers)

    def random_bumpers(self, count: int = 1) -> List[Bumper]:
        bumpers = self.all_bumpers()
        self.rng.shuffle(bumpers)
        return bumpers[:max(0, count)]

    def add_bumper(self, video_id: str, title: Optional[str] = None, duration: Optional[int] = None) -> bool:
        if not video_id:
            raise ValueError("video_id is required")
        with self._connect(write=True) as conn:
            existing = conn.execute(
                select(bumpers_table.c.id).where(bumpers_table.c.youtube_video_id == video_id)
            ).scalar()
            if existing is not None:
                return False
            conn.execute(
                insert(bumpers_table).values(
                    youtube_video_id=video_id, title=title or "Bumper", duration_seconds=duration or 0
                )
            )
        self.clear_cache("bumpers:")
        return True

    def remove_bumper(self, video_id: str) -> bool:
        with self._connect(write=True) as conn:
            result = conn.execute(delete(bumpers_table).where(bumpers_table.c.youtube_video_id == video_id))
        self.clear_cache("bumpers:")
        return bool(result.rowcount)
