"""Hold → confirm lifecycle of a room reservation.

``pending`` is the only entry state; ``confirmed`` and ``cancelled`` are
terminal (an administrator may still cancel a confirmed booking). Every
transition is a compare-and-set on the stored status, so the database decides
races between requests and the sweeper.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from roombook.app.core.config import settings
from roombook.app.core.errors import (
    AlreadyDecidedError,
    CapacityError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    NotOwnerError,
    ValidationError,
)
from roombook.app.db.tables import Reservation, ReservationStatus, Room
from roombook.app.services.repository import atomic
from roombook.app.services.slot_grid import SlotGrid, get_slot_grid

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SlotState:
    label: str
    start_ts: datetime
    end_ts: datetime
    available: bool


async def create_hold(
    session: AsyncSession,
    *,
    room_id: int,
    requester_id: str,
    start_ts: datetime,
    end_ts: datetime,
    party_size: int,
    purpose: str,
    hold_duration: timedelta | None = None,
    now: datetime | None = None,
    grid: SlotGrid | None = None,
) -> Reservation:
    """Place a pending hold on ``[start_ts, end_ts)`` or raise ConflictError.

    Validation runs before any storage access. The room row lock, the
    overlap check and the insert share one transaction.
    """
    now = now or utcnow()
    grid = grid or get_slot_grid()
    if hold_duration is None:
        hold_duration = timedelta(seconds=settings.HOLD_DURATION_SECONDS)

    if not requester_id:
        raise ValidationError("A requester identity is required")
    if party_size <= 0:
        raise ValidationError("Party size must be at least 1")
    if hold_duration <= timedelta(0):
        raise ValidationError("Hold duration must be positive")
    grid.validate_range(start_ts, end_ts)
    if end_ts <= now:
        raise ValidationError("The selected time has already passed")

    row = {
        "id": uuid4(),
        "room_id": room_id,
        "requester_id": requester_id,
        "start_ts": start_ts,
        "end_ts": end_ts,
        "party_size": party_size,
        "purpose": purpose,
        "status": ReservationStatus.PENDING.value,
        "hold_expiry": now + hold_duration,
        "created_at": now,
    }

    async with atomic(session) as repo:
        room = await repo.get_room(room_id, for_update=True)
        if room is None:
            raise NotFoundError("Room not found")
        if party_size > room.capacity:
            raise CapacityError(f"{room.name} holds at most {room.capacity} people")

        reclaimed = await repo.reclaim_expired(room_id, start_ts, end_ts, now)
        if reclaimed:
            logger.info("Reclaimed %s expired hold(s) on room %s", reclaimed, room_id)

        try:
            reservation_id = await repo.atomic_check_and_insert(row)
        except ConflictError:
            logger.info("Hold rejected: room %s busy between %s and %s", room_id, start_ts, end_ts)
            raise

        if settings.RELEASE_PRIOR_HOLDS:
            released = await repo.release_pending_for_requester(requester_id, keep=reservation_id)
            if released:
                logger.info("Released %s earlier hold(s) of %s", released, requester_id)

        reservation = await repo.get_reservation(reservation_id)

    logger.info("Hold %s placed on room %s until %s", reservation_id, room_id, row["hold_expiry"])
    return reservation


async def confirm(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    requester_id: str,
    now: datetime | None = None,
) -> Reservation:
    """Finalise a pending hold owned by ``requester_id``.

    Expiry is judged against ``now`` even if the sweeper has not run yet. The
    original overlap check is trusted; it is not repeated here.
    """
    now = now or utcnow()

    async with atomic(session) as repo:
        reservation = await repo.get_reservation(reservation_id, for_update=True)
        if reservation is None:
            raise NotFoundError()
        if reservation.requester_id != requester_id:
            raise NotOwnerError()
        if reservation.status is not ReservationStatus.PENDING:
            raise AlreadyDecidedError(reservation.status.value)
        if reservation.hold_expiry is None or now >= reservation.hold_expiry:
            raise ExpiredError()

        applied = await repo.compare_and_set_status(
            reservation_id, ReservationStatus.PENDING, ReservationStatus.CONFIRMED
        )
        if not applied:
            current = await repo.get_reservation(reservation_id)
            raise AlreadyDecidedError(current.status.value if current else ReservationStatus.CANCELLED.value)

        confirmed = await repo.get_reservation(reservation_id)

    logger.info("Reservation %s confirmed by %s", reservation_id, requester_id)
    return confirmed


async def cancel(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    requester_id: str,
    is_admin: bool = False,
) -> Reservation:
    """Cancel a reservation. Cancelling a cancelled reservation is a no-op."""
    async with atomic(session) as repo:
        reservation = await repo.get_reservation(reservation_id, for_update=True)
        if reservation is None:
            raise NotFoundError()
        if reservation.requester_id != requester_id and not is_admin:
            raise NotOwnerError()
        if reservation.status is ReservationStatus.CANCELLED:
            return reservation
        if reservation.status is ReservationStatus.CONFIRMED and not is_admin:
            raise AlreadyDecidedError(reservation.status.value)

        applied = await repo.compare_and_set_status(
            reservation_id, reservation.status, ReservationStatus.CANCELLED
        )
        cancelled = await repo.get_reservation(reservation_id)

    if applied:
        logger.info("Reservation %s cancelled by %s", reservation_id, requester_id)
    return cancelled


async def get_reservation(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    requester_id: str,
    is_admin: bool = False,
) -> Reservation:
    async with atomic(session) as repo:
        reservation = await repo.get_reservation(reservation_id)
    if reservation is None:
        raise NotFoundError()
    if reservation.requester_id != requester_id and not is_admin:
        raise NotOwnerError()
    return reservation


async def list_for_requester(
    session: AsyncSession,
    requester_id: str,
    *,
    include_cancelled: bool = False,
) -> list[Reservation]:
    statuses = None if include_cancelled else [ReservationStatus.PENDING, ReservationStatus.CONFIRMED]
    async with atomic(session) as repo:
        return await repo.list_for_requester(requester_id, statuses)


async def list_rooms(session: AsyncSession) -> list[Room]:
    async with atomic(session) as repo:
        return await repo.list_rooms()


async def room_availability(
    session: AsyncSession,
    *,
    room_id: int,
    day: date,
    now: datetime | None = None,
    grid: SlotGrid | None = None,
) -> list[SlotState]:
    """Mark each slot of ``day`` free or busy for one room.

    Pending holds whose expiry has passed no longer block their slots.
    """
    now = now or utcnow()
    grid = grid or get_slot_grid()
    open_ts, close_ts = grid.day_bounds(day)

    async with atomic(session) as repo:
        room = await repo.get_room(room_id)
        if room is None:
            raise NotFoundError("Room not found")
        booked = [r for r in await repo.list_live_for_room(room_id, open_ts, close_ts) if r.is_live(now)]

    states = []
    step = timedelta(minutes=grid.slot_minutes)
    for label in grid.slot_sequence():
        slot_start = grid.slot_start(day, label)
        slot_end = slot_start + step
        busy = any(r.start_ts < slot_end and slot_start < r.end_ts for r in booked)
        states.append(SlotState(label=label, start_ts=slot_start, end_ts=slot_end, available=not busy))
    return states
