from datetime import timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.app.core.config import settings
from roombook.app.core.errors import ReservationError
from roombook.app.db.session import get_session
from roombook.app.routers.deps import Requester, get_requester, to_http
from roombook.app.routers.schemas import HoldIn, HoldOut, ReservationOut
from roombook.app.services import reservations as reservation_service
from roombook.app.services.slot_grid import get_slot_grid


router = APIRouter()


@router.post("/reservations/hold", response_model=HoldOut, status_code=status.HTTP_201_CREATED)
async def hold_endpoint(
    payload: HoldIn,
    requester: Requester = Depends(get_requester),
    session: AsyncSession = Depends(get_session),
) -> HoldOut:
    hold_duration = timedelta(seconds=settings.HOLD_DURATION_SECONDS)
    grid = get_slot_grid()
    try:
        if payload.slots is not None:
            start_ts, end_ts = grid.span_for_slots(payload.day, payload.slots)
        else:
            start_ts, end_ts = payload.start_ts, payload.end_ts

        reservation = await reservation_service.create_hold(
            session,
            room_id=payload.room_id,
            requester_id=requester.id,
            start_ts=start_ts,
            end_ts=end_ts,
            party_size=payload.party_size,
            purpose=payload.purpose,
            hold_duration=hold_duration,
            grid=grid,
        )
    except ReservationError as exc:
        raise to_http(exc) from exc

    return HoldOut(
        id=reservation.id,
        room_id=reservation.room_id,
        start_ts=reservation.start_ts,
        end_ts=reservation.end_ts,
        status=reservation.status.value,
        hold_expiry=reservation.hold_expiry,
        expires_in_seconds=int(hold_duration.total_seconds()),
        slots=grid.labels_between(reservation.start_ts, reservation.end_ts),
    )


@router.post("/reservations/{reservation_id}/confirm", response_model=ReservationOut)
async def confirm_endpoint(
    reservation_id: UUID,
    requester: Requester = Depends(get_requester),
    session: AsyncSession = Depends(get_session),
) -> ReservationOut:
    try:
        reservation = await reservation_service.confirm(
            session, reservation_id=reservation_id, requester_id=requester.id
        )
    except ReservationError as exc:
        raise to_http(exc) from exc
    return ReservationOut.from_domain(reservation)


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationOut)
async def cancel_endpoint(
    reservation_id: UUID,
    requester: Requester = Depends(get_requester),
    session: AsyncSession = Depends(get_session),
) -> ReservationOut:
    try:
        reservation = await reservation_service.cancel(
            session,
            reservation_id=reservation_id,
            requester_id=requester.id,
            is_admin=requester.is_admin,
        )
    except ReservationError as exc:
        raise to_http(exc) from exc
    return ReservationOut.from_domain(reservation)


@router.get("/reservations/mine", response_model=list[ReservationOut])
async def my_reservations(
    include_cancelled: bool = False,
    requester: Requester = Depends(get_requester),
    session: AsyncSession = Depends(get_session),
) -> list[ReservationOut]:
    try:
        found = await reservation_service.list_for_requester(
            session, requester.id, include_cancelled=include_cancelled
        )
    except ReservationError as exc:
        raise to_http(exc) from exc
    return [ReservationOut.from_domain(reservation) for reservation in found]


@router.get("/reservations/{reservation_id}", response_model=ReservationOut)
async def get_endpoint(
    reservation_id: UUID,
    requester: Requester = Depends(get_requester),
    session: AsyncSession = Depends(get_session),
) -> ReservationOut:
    try:
        reservation = await reservation_service.get_reservation(
            session,
            reservation_id=reservation_id,
            requester_id=requester.id,
            is_admin=requester.is_admin,
        )
    except ReservationError as exc:
        raise to_http(exc) from exc
    return ReservationOut.from_domain(reservation)
