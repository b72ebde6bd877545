"""Discrete booking grid shared by every room.

A day is cut into fixed-width slots starting at ``day_start``; the last slot
starts at ``last_slot``. Slot labels are ``HH:MM`` strings in the grid's time
zone and slot ``i`` covers ``[label_i, label_i + slot_minutes)``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from roombook.app.core.config import settings
from roombook.app.core.errors import ValidationError

MINUTES_PER_DAY = 24 * 60


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


class SlotGrid:
    def __init__(self, day_start: time, last_slot: time, slot_minutes: int = 30, tz: str = "Asia/Bangkok") -> None:
        if slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        first, last = _minutes(day_start), _minutes(last_slot)
        if last < first or (last - first) % slot_minutes:
            raise ValueError("last_slot must lie on the grid after day_start")
        if last + slot_minutes > MINUTES_PER_DAY:
            raise ValueError("the grid cannot run past midnight")

        self.slot_minutes = slot_minutes
        self.tz = ZoneInfo(tz)
        self._first = first
        self._close = last + slot_minutes
        self._labels = tuple(
            f"{offset // 60:02d}:{offset % 60:02d}" for offset in range(first, self._close, slot_minutes)
        )
        self._positions = {label: index for index, label in enumerate(self._labels)}

    def slot_sequence(self) -> tuple[str, ...]:
        return self._labels

    def index_of(self, label: str) -> int:
        try:
            return self._positions[label]
        except KeyError:
            raise ValidationError(f"{label!r} is not a bookable time slot") from None

    def are_consecutive(self, slots: Iterable[str]) -> bool:
        """True when the slots form one gap-free block on the grid."""
        indices = sorted({self.index_of(label) for label in slots})
        if len(indices) < 2:
            return True
        return all(current == previous + 1 for previous, current in zip(indices, indices[1:]))

    def slot_start(self, day: date, label: str) -> datetime:
        offset = self._first + self.index_of(label) * self.slot_minutes
        return self._midnight(day) + timedelta(minutes=offset)

    def span_for_slots(self, day: date, slots: Iterable[str]) -> tuple[datetime, datetime]:
        """Turn a contiguous slot selection on ``day`` into a ``[start, end)`` interval."""
        labels = sorted(set(slots), key=self.index_of)
        if not labels:
            raise ValidationError("Select at least one time slot")
        if not self.are_consecutive(labels):
            raise ValidationError("Selected time slots must be consecutive")
        start = self.slot_start(day, labels[0])
        return start, self.slot_start(day, labels[-1]) + timedelta(minutes=self.slot_minutes)

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        midnight = self._midnight(day)
        return midnight + timedelta(minutes=self._first), midnight + timedelta(minutes=self._close)

    def validate_range(self, start: datetime, end: datetime) -> None:
        """Reject intervals that are empty, naive or off the grid."""
        for value in (start, end):
            if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
                raise ValidationError("Times must include timezone information")
        if start >= end:
            raise ValidationError("Start time must be before end time")

        local_start = start.astimezone(self.tz)
        midnight = self._midnight(local_start.date())
        start_offset = self._offset(local_start, midnight)
        end_offset = self._offset(end.astimezone(self.tz), midnight)

        if start_offset is None or not (self._first <= start_offset < self._close) or (
            (start_offset - self._first) % self.slot_minutes
        ):
            raise ValidationError("Start time does not match a bookable slot")
        if end_offset is None or not (start_offset < end_offset <= self._close) or (
            (end_offset - self._first) % self.slot_minutes
        ):
            raise ValidationError("End time does not match a bookable slot on the same day")

    def labels_between(self, start: datetime, end: datetime) -> list[str]:
        """Labels of the slots covered by an aligned interval."""
        self.validate_range(start, end)
        local_start = start.astimezone(self.tz)
        count = int((end - start).total_seconds() // 60) // self.slot_minutes
        first = self.index_of(local_start.strftime("%H:%M"))
        return list(self._labels[first:first + count])

    def _midnight(self, day: date) -> datetime:
        return datetime.combine(day, time(0), tzinfo=self.tz)

    @staticmethod
    def _offset(moment: datetime, midnight: datetime) -> int | None:
        seconds = (moment.astimezone(midnight.tzinfo) - midnight).total_seconds()
        if seconds % 60:
            return None
        return int(seconds // 60)


@lru_cache(maxsize=1)
def get_slot_grid() -> SlotGrid:
    """The process-wide grid built from settings."""
    return SlotGrid(
        day_start=settings.DAY_START,
        last_slot=settings.LAST_SLOT,
        slot_minutes=settings.SLOT_MINUTES,
        tz=settings.TIMEZONE,
    )
