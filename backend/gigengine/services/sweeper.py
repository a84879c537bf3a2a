"""
Periodic maintenance: persist lazy expiry and rebuild the geo index.

Run by the worker CLI, or inside the API process when
ENABLE_BACKGROUND_SWEEP is set.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from gigengine.services import gig_store
from gigengine.services.geo_index import GeoIndex
from gigengine.services.lifecycle import sweep_expired_gigs

logger = logging.getLogger(__name__)


async def rebuild_geo_index(db: AsyncSession, geo_index: GeoIndex) -> int:
    """Replace the index contents with what storage holds now."""
    entries = await gig_store.load_geo_entries(db)
    return geo_index.load(entries)


async def run_sweep(
    db: AsyncSession,
    geo_index: Optional[GeoIndex] = None,
    now: Optional[datetime] = None,
) -> Sequence[UUID]:
    """One sweep pass. Returns the ids expired by this pass."""
    expired_ids = await sweep_expired_gigs(db, now=now)
    if geo_index is not None:
        indexed = await rebuild_geo_index(db, geo_index)
        logger.info(f"Sweep complete: {len(expired_ids)} expired, {indexed} gigs indexed")
    return expired_ids


async def sweep_forever(
    session_factory: Callable[[], AsyncSession],
    geo_index: Optional[GeoIndex],
    interval_seconds: float,
) -> None:
    """
    Run a sweep every `interval_seconds` until cancelled.

    A failed pass is logged and the loop carries on with the next one.
    """
    logger.info(f"Background sweep started (every {interval_seconds}s)")
    while True:
        try:
            async with session_factory() as db:
                await run_sweep(db, geo_index)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Sweep pass failed: {type(e).__name__}: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)
