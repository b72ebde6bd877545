from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.app.core.config import settings
from roombook.app.core.errors import ReservationError
from roombook.app.db.session import get_session
from roombook.app.routers.deps import to_http
from roombook.app.routers.schemas import AvailabilityOut, RoomOut, SlotGridOut, SlotOut
from roombook.app.services import reservations as reservation_service
from roombook.app.services.slot_grid import get_slot_grid

router = APIRouter()


@router.get("/slots", response_model=SlotGridOut)
async def slot_grid() -> SlotGridOut:
    grid = get_slot_grid()
    return SlotGridOut(
        timezone=settings.TIMEZONE,
        slot_minutes=grid.slot_minutes,
        slots=list(grid.slot_sequence()),
    )


@router.get("/rooms", response_model=list[RoomOut])
async def list_rooms(session: AsyncSession = Depends(get_session)) -> list[RoomOut]:
    try:
        found = await reservation_service.list_rooms(session)
    except ReservationError as exc:
        raise to_http(exc) from exc
    return [
        RoomOut(
            id=room.id,
            name=room.name,
            capacity=room.capacity,
            has_projector=room.has_projector,
            location=room.location,
        )
        for room in found
    ]


@router.get("/rooms/{room_id}/availability", response_model=AvailabilityOut)
async def room_availability(
    room_id: int,
    day: date,
    session: AsyncSession = Depends(get_session),
) -> AvailabilityOut:
    """Free/busy state of every slot of ``day``; no requester details are exposed."""
    try:
        states = await reservation_service.room_availability(session, room_id=room_id, day=day)
    except ReservationError as exc:
        raise to_http(exc) from exc
    return AvailabilityOut(
        room_id=room_id,
        day=day,
        slots=[
            SlotOut(label=s.label, start_ts=s.start_ts, end_ts=s.end_ts, available=s.available)
            for s in states
        ],
    )
