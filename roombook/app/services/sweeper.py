"""Reclaims pending holds whose expiry has passed.

Each expired row is cancelled in its own transaction through a compare-and-set
on ``status = 'pending'``. A confirm that commits first wins and the sweep's
update of that row becomes a no-op. Rows that fail are left pending and
picked up again by the next run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from roombook.app.core.errors import StorageError
from roombook.app.db.tables import ReservationStatus
from roombook.app.services.repository import atomic
from roombook.app.services.reservations import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    cancelled: int
    failed: int = 0


async def sweep(session: AsyncSession, now: datetime | None = None, batch_size: int | None = None) -> SweepResult:
    now = now or utcnow()

    async with atomic(session) as repo:
        expired = await repo.query_expired_pending(now, limit=batch_size)

    cancelled = failed = 0
    for reservation_id in expired:
        try:
            async with atomic(session) as repo:
                applied = await repo.compare_and_set_status(
                    reservation_id, ReservationStatus.PENDING, ReservationStatus.CANCELLED
                )
        except StorageError:
            failed += 1
            logger.warning("Could not cancel expired hold %s; retrying on the next sweep", reservation_id)
            continue
        if applied:
            cancelled += 1

    if expired:
        logger.info("Sweep at %s cancelled %s of %s expired hold(s), %s failed", now, cancelled, len(expired), failed)
    return SweepResult(cancelled=cancelled, failed=failed)


async def run_sweeper(session_factory: async_sessionmaker[AsyncSession], interval_seconds: float) -> None:
    """Sweep forever on a fixed interval until cancelled."""
    logger.info("Hold sweeper started, interval %ss", interval_seconds)
    while True:
        try:
            async with session_factory() as session:
                await sweep(session)
        except StorageError:
            logger.error("Hold sweep failed; next attempt in %ss", interval_seconds)
        except Exception:
            logger.exception("Unexpected error in hold sweep; next attempt in %ss", interval_seconds)
        await asyncio.sleep(interval_seconds)
