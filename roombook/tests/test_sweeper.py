import asyncio
import contextlib
from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError

from roombook.app.core.errors import AlreadyDecidedError, ConflictError, ExpiredError
from roombook.app.db.session import SessionLocal
from roombook.app.db.tables import ReservationStatus
from roombook.app.services import reservations as service
from roombook.app.services import sweeper as sweeper_module
from roombook.app.services.repository import ReservationRepository, atomic
from roombook.app.services.slot_grid import SlotGrid, get_slot_grid
from roombook.app.services.sweeper import SweepResult, sweep


pytestmark = [pytest.mark.asyncio, pytest.mark.usefixtures("prepared_db")]

DAY = date(2030, 3, 4)
NOW = datetime(2030, 3, 4, 0, 0, tzinfo=timezone.utc)
HOLD = timedelta(seconds=30)


async def hold(session, labels, requester="alice@example.com", room_id=3, now=NOW, grid=None):
    grid = grid or get_slot_grid()
    start, end = grid.span_for_slots(DAY, labels)
    return await service.create_hold(
        session,
        room_id=room_id,
        requester_id=requester,
        start_ts=start,
        end_ts=end,
        party_size=3,
        purpose="revision",
        hold_duration=HOLD,
        now=now,
        grid=grid,
    )


async def status_of(session, reservation_id):
    async with atomic(session) as repo:
        return (await repo.get_reservation(reservation_id)).status


async def test_sweep_cancels_only_expired_pending_holds(session):
    expired = await hold(session, ["10:00"])
    confirmed = await hold(session, ["11:00"], requester="bob@example.com")
    await service.confirm(session, reservation_id=confirmed.id, requester_id="bob@example.com", now=NOW)
    fresh = await hold(session, ["12:00"], requester="carol@example.com", now=NOW + HOLD)

    result = await sweep(session, now=NOW + HOLD)

    assert result.cancelled == 1
    assert result.failed == 0
    assert await status_of(session, expired.id) is ReservationStatus.CANCELLED
    assert await status_of(session, confirmed.id) is ReservationStatus.CONFIRMED
    assert await status_of(session, fresh.id) is ReservationStatus.PENDING


async def test_sweep_is_idempotent(session):
    await hold(session, ["10:00"])
    await hold(session, ["10:30"], requester="bob@example.com")
    later = NOW + HOLD + timedelta(seconds=1)

    first = await sweep(session, now=later)
    second = await sweep(session, now=later)

    assert first.cancelled == 2
    assert second.cancelled == 0


async def test_sweep_with_nothing_to_do(session):
    assert (await sweep(session, now=NOW)).cancelled == 0


async def test_concurrent_sweeps_cancel_each_row_once(prepared_db):
    async with SessionLocal() as session:
        for index, label in enumerate(["09:00", "09:30", "10:00", "10:30"]):
            await hold(session, [label], requester=f"user{index}@example.com")

    async def run():
        async with SessionLocal() as own_session:
            return await sweep(own_session, now=NOW + HOLD)

    results = await asyncio.gather(run(), run(), run())

    assert sum(result.cancelled for result in results) == 4


async def test_confirm_and_sweep_race_has_one_outcome(prepared_db):
    async with SessionLocal() as session:
        reservation = await hold(session, ["10:00", "10:30"])
    deadline = reservation.hold_expiry

    async def confirm():
        async with SessionLocal() as own_session:
            return await service.confirm(
                own_session,
                reservation_id=reservation.id,
                requester_id="alice@example.com",
                now=deadline - timedelta(microseconds=1),
            )

    async def run_sweep():
        async with SessionLocal() as own_session:
            return await sweep(own_session, now=deadline)

    confirmed, swept = await asyncio.gather(confirm(), run_sweep(), return_exceptions=True)

    async with SessionLocal() as session:
        final = await status_of(session, reservation.id)

    if isinstance(confirmed, BaseException):
        assert isinstance(confirmed, (AlreadyDecidedError, ExpiredError))
        assert swept.cancelled == 1
        assert final is ReservationStatus.CANCELLED
    else:
        assert swept.cancelled == 0
        assert final is ReservationStatus.CONFIRMED


async def test_room_three_walkthrough(session):
    grid = get_slot_grid()
    assert grid.are_consecutive(["10:00", "10:30"])

    first = await hold(session, ["10:00", "10:30"])
    assert first.status is ReservationStatus.PENDING

    # 10:15-10:45 needs a quarter-hour grid to be expressible at all.
    quarter_hours = SlotGrid(day_start=time(8, 0), last_slot=time(20, 45), slot_minutes=15, tz="Asia/Bangkok")
    with pytest.raises(ConflictError):
        await hold(session, ["10:15", "10:30"], requester="bob@example.com", grid=quarter_hours)

    expired_at = first.hold_expiry
    with pytest.raises(ExpiredError):
        await service.confirm(session, reservation_id=first.id, requester_id="alice@example.com", now=expired_at)

    result = await sweep(session, now=expired_at)
    assert result.cancelled == 1
    assert await status_of(session, first.id) is ReservationStatus.CANCELLED

    second = await hold(session, ["10:15", "10:30"], requester="bob@example.com", now=expired_at, grid=quarter_hours)
    assert second.status is ReservationStatus.PENDING
    assert second.start_ts == quarter_hours.slot_start(DAY, "10:15")
    assert second.end_ts == quarter_hours.slot_start(DAY, "10:45")


async def test_failed_row_stays_pending_for_the_next_sweep(session, monkeypatch):
    broken = await hold(session, ["10:00"])
    healthy = await hold(session, ["11:00"], requester="bob@example.com")
    original = ReservationRepository.compare_and_set_status

    async def flaky_compare_and_set(self, reservation_id, expected, new):
        if reservation_id == broken.id:
            raise SQLAlchemyError("connection reset during update")
        return await original(self, reservation_id, expected, new)

    monkeypatch.setattr(ReservationRepository, "compare_and_set_status", flaky_compare_and_set)
    result = await sweep(session, now=NOW + HOLD)

    assert result == SweepResult(cancelled=1, failed=1)
    assert await status_of(session, broken.id) is ReservationStatus.PENDING
    assert await status_of(session, healthy.id) is ReservationStatus.CANCELLED

    monkeypatch.undo()
    retry = await sweep(session, now=NOW + HOLD)

    assert retry == SweepResult(cancelled=1, failed=0)
    assert await status_of(session, broken.id) is ReservationStatus.CANCELLED


async def test_sweep_respects_batch_size(session):
    for index, label in enumerate(["09:00", "10:00", "11:00"]):
        await hold(session, [label], requester=f"user{index}@example.com")

    first = await sweep(session, now=NOW + HOLD, batch_size=2)
    second = await sweep(session, now=NOW + HOLD, batch_size=2)

    assert first.cancelled == 2
    assert second.cancelled == 1


async def test_sweeper_loop_survives_an_outage(monkeypatch):
    calls = []
    recovered = asyncio.Event()

    async def flaky_sweep(session):
        calls.append(session)
        if len(calls) == 1:
            raise ConnectionRefusedError("db down")
        if len(calls) == 2:
            raise RuntimeError("unexpected driver state")
        recovered.set()
        return SweepResult(cancelled=0)

    monkeypatch.setattr(sweeper_module, "sweep", flaky_sweep)
    task = asyncio.create_task(sweeper_module.run_sweeper(SessionLocal, 0.01))
    try:
        await asyncio.wait_for(recovered.wait(), timeout=5)
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    assert len(calls) >= 3
