"""Storage boundary for the reservation core.

Every operation runs inside the caller's transaction; ``atomic`` opens one and
turns SQLAlchemy failures into domain errors, so a check and the write that
depends on it always share the same unit of work.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from asyncpg import exceptions as asyncpg_exc
from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.app.core.errors import ConflictError, StorageError
from roombook.app.db.tables import (
    LIVE_STATUSES,
    Reservation,
    ReservationStatus,
    Room,
    reservations,
    rooms,
)

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT = "reservations_no_overlap"


def _is_overlap_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", exc)
    cause = getattr(orig, "__cause__", None)
    if isinstance(orig, asyncpg_exc.ExclusionViolationError) or isinstance(cause, asyncpg_exc.ExclusionViolationError):
        return True
    return OVERLAP_CONSTRAINT in str(orig)


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[ReservationRepository]:
    """Run the block in one transaction and yield a repository bound to it."""
    try:
        async with session.begin():
            yield ReservationRepository(session)
    except IntegrityError as exc:
        if _is_overlap_violation(exc):
            raise ConflictError() from exc
        logger.error("Integrity failure in reservation transaction", exc_info=True)
        raise StorageError() from exc
    except SQLAlchemyError as exc:
        logger.error("Reservation transaction failed", exc_info=True)
        raise StorageError() from exc
    except (OSError, asyncio.TimeoutError) as exc:
        logger.error("Reservation store unreachable", exc_info=True)
        raise StorageError() from exc


def _overlapping(room_id: int, start: datetime, end: datetime):
    # Half-open intervals: [start, end) and [s2, e2) meet iff start < e2 and s2 < end.
    return and_(
        reservations.c.room_id == room_id,
        reservations.c.start_ts < end,
        reservations.c.end_ts > start,
    )


class ReservationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_room(self, room_id: int, *, for_update: bool = False) -> Room | None:
        query = select(rooms).where(rooms.c.id == room_id)
        if for_update:
            # Serialises concurrent holds on one room for the rest of the transaction.
            query = query.with_for_update()
        row = (await self.session.execute(query)).one_or_none()
        return Room.from_row(row) if row is not None else None

    async def list_rooms(self) -> list[Room]:
        result = await self.session.execute(select(rooms).order_by(rooms.c.id))
        return [Room.from_row(row) for row in result]

    async def get_reservation(self, reservation_id: UUID, *, for_update: bool = False) -> Reservation | None:
        query = select(reservations).where(reservations.c.id == reservation_id)
        if for_update:
            query = query.with_for_update()
        row = (await self.session.execute(query)).one_or_none()
        return Reservation.from_row(row) if row is not None else None

    async def has_overlap(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_reservation_id: UUID | None = None,
    ) -> bool:
        conditions = [
            _overlapping(room_id, start, end),
            reservations.c.status.in_(LIVE_STATUSES),
        ]
        if exclude_reservation_id is not None:
            conditions.append(reservations.c.id != exclude_reservation_id)
        query = select(reservations.c.id).where(*conditions).limit(1)
        return (await self.session.execute(query)).first() is not None

    async def atomic_check_and_insert(self, row: dict[str, Any]) -> UUID:
        """Insert ``row`` unless it overlaps a live reservation of its room."""
        if await self.has_overlap(row["room_id"], row["start_ts"], row["end_ts"]):
            raise ConflictError()
        await self.session.execute(insert(reservations).values(**row))
        return row["id"]

    async def compare_and_set_status(
        self,
        reservation_id: UUID,
        expected: ReservationStatus,
        new: ReservationStatus,
    ) -> bool:
        """Move one row from ``expected`` to ``new``; False when another writer got there first."""
        result = await self.session.execute(
            update(reservations)
            .where(reservations.c.id == reservation_id, reservations.c.status == expected.value)
            .values(status=new.value, hold_expiry=None)
        )
        return result.rowcount == 1

    async def query_expired_pending(self, now: datetime, limit: int | None = None) -> list[UUID]:
        query = (
            select(reservations.c.id)
            .where(
                reservations.c.status == ReservationStatus.PENDING.value,
                reservations.c.hold_expiry <= now,
            )
            .order_by(reservations.c.hold_expiry)
        )
        if limit is not None:
            query = query.limit(limit)
        return list((await self.session.execute(query)).scalars())

    async def reclaim_expired(self, room_id: int, start: datetime, end: datetime, now: datetime) -> int:
        """Cancel expired holds of a room that overlap ``[start, end)``."""
        result = await self.session.execute(
            update(reservations)
            .where(
                _overlapping(room_id, start, end),
                reservations.c.status == ReservationStatus.PENDING.value,
                reservations.c.hold_expiry <= now,
            )
            .values(status=ReservationStatus.CANCELLED.value, hold_expiry=None)
        )
        return result.rowcount

    async def release_pending_for_requester(self, requester_id: str, keep: UUID) -> int:
        result = await self.session.execute(
            update(reservations)
            .where(
                reservations.c.requester_id == requester_id,
                reservations.c.status == ReservationStatus.PENDING.value,
                reservations.c.id != keep,
            )
            .values(status=ReservationStatus.CANCELLED.value, hold_expiry=None)
        )
        return result.rowcount

    async def list_for_requester(
        self,
        requester_id: str,
        statuses: Sequence[ReservationStatus] | None = None,
    ) -> list[Reservation]:
        query = select(reservations).where(reservations.c.requester_id == requester_id)
        if statuses:
            query = query.where(reservations.c.status.in_([status.value for status in statuses]))
        result = await self.session.execute(query.order_by(reservations.c.start_ts))
        return [Reservation.from_row(row) for row in result]

    async def list_live_for_room(self, room_id: int, start: datetime, end: datetime) -> list[Reservation]:
        result = await self.session.execute(
            select(reservations)
            .where(_overlapping(room_id, start, end), reservations.c.status.in_(LIVE_STATUSES))
            .order_by(reservations.c.start_ts)
        )
        return [Reservation.from_row(row) for row in result]
