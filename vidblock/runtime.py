"""
Process-wide service wiring used by the HTTP layer.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from . import settings
from .availability import AvailabilityTracker
from .block_assembler import ApiBackend, BlockAssembler, StoreBackend
from .bumper_pool import BumperRepository
from .catalog_store import CatalogStore
from .mixing import MixingEngine
from .prefetch import CacheWarmer
from .source_fetcher import SourceFetcher
from .youtube_client import YouTubeClient

LOGGER = logging.getLogger(__name__)


@dataclass
class Runtime:
    fetcher: SourceFetcher
    bumpers: BumperRepository
    engine: MixingEngine
    tracker: AvailabilityTracker
    warmer: CacheWarmer
    assembler: BlockAssembler
    store: Optional[CatalogStore] = None


def _open_store() -> Optional[CatalogStore]:
    url = settings.database_url()
    if not url:
        LOGGER.info("Database disabled; serving from the platform API only")
        return None
    try:
        return CatalogStore.from_url(url)
    except (SQLAlchemyError, ImportError) as exc:
        LOGGER.error("Could not initialize database engine, falling back to API only: %s", exc)
        return None


def build_runtime(
    client: Optional[YouTubeClient] = None,
    store: Optional[CatalogStore] = None,
    rng: Optional[random.Random] = None,
    use_store: bool = True,
) -> Runtime:
    rng = rng or random.Random()
    if store is None and use_store:
        store = _open_store()

    fetcher = SourceFetcher(client=client)
    bumpers = BumperRepository(fetcher=fetcher, rng=rng)
    engine = MixingEngine(rng=rng)
    tracker = AvailabilityTracker(store=store)
    warmer = CacheWarmer(fetcher, bumpers, store=store, tracker=tracker)

    backends = [
        StoreBackend(store, engine, bumpers, tracker, fetcher=fetcher),
        ApiBackend(fetcher, engine, bumpers, tracker),
    ]
    assembler = BlockAssembler(backends, is_unlocked=warmer.is_unlocked)
    return Runtime(
        fetcher=fetcher,
        bumpers=bumpers,
        engine=engine,
        tracker=tracker,
        warmer=warmer,
        assembler=assembler,
        store=store,
    )


_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    global _runtime
    _runtime = runtime
