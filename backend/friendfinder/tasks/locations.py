from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Coroutine, TypeVar

from friendfinder.core.settings import get_settings
from friendfinder.db.session import get_sessionmaker
from friendfinder.services.spatial_index import SpatialIndex
from friendfinder.tasks.celery_app import celery_app


logger = logging.getLogger(__name__)

_T = TypeVar("_T")


def _run_coro_sync(coro_factory: Callable[[], Coroutine[Any, Any, _T]]) -> _T:
    """Run a coroutine from sync Celery code.

    Eager tasks may be called from inside a running loop (FastAPI, tests),
    where `asyncio.run()` fails; the coroutine then runs on a one-off thread.
    """

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro_factory())

    with ThreadPoolExecutor(max_workers=1) as ex:
        fut = ex.submit(lambda: asyncio.run(coro_factory()))
        return fut.result()


async def _reindex_geohashes(*, precision: int, batch_size: int) -> int:
    index = SpatialIndex(get_sessionmaker(), precision=precision)
    return await index.rebuild_geohashes(batch_size=batch_size)


@celery_app.task(name="friendfinder.tasks.locations.reindex_geohashes_task")
def reindex_geohashes_task(
    precision: int | None = None, batch_size: int = 500
) -> dict[str, int]:
    """Re-derive every stored geohash at the storage precision.

    Run after changing `geohash_storage_precision` so that stored cells match
    the precision the index writes with.
    """

    p = int(precision or get_settings().geohash_storage_precision)
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    updated = _run_coro_sync(
        lambda: _reindex_geohashes(precision=p, batch_size=batch_size)
    )
    logger.info("Reindexed geohashes precision=%d updated=%d", p, updated)
    return {"precision": p, "updated": updated}
