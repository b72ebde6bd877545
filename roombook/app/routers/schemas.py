from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from roombook.app.db.tables import Reservation


class HoldIn(BaseModel):
    room_id: int = Field(ge=1)
    party_size: int = Field(ge=1, le=500)
    purpose: str = Field(default="", max_length=1024)
    # Either an explicit interval (ISO 8601 with offset, e.g. "2025-11-05T10:00:00+07:00") ...
    start_ts: datetime | None = None
    end_ts: datetime | None = None
    # ... or a day plus consecutive grid labels such as ["10:00", "10:30"].
    day: date | None = None
    slots: list[str] | None = Field(default=None, max_length=48)

    @model_validator(mode="after")
    def _one_form(self) -> "HoldIn":
        explicit = self.start_ts is not None or self.end_ts is not None
        by_slots = self.day is not None or self.slots is not None
        if explicit == by_slots:
            raise ValueError("provide either start_ts and end_ts, or day and slots")
        if explicit and (self.start_ts is None or self.end_ts is None):
            raise ValueError("start_ts and end_ts must be given together")
        if by_slots and (self.day is None or not self.slots):
            raise ValueError("day and slots must be given together")
        return self


class HoldOut(BaseModel):
    id: UUID
    room_id: int
    start_ts: datetime
    end_ts: datetime
    status: str
    hold_expiry: datetime
    expires_in_seconds: int
    slots: list[str]


class ReservationOut(BaseModel):
    id: UUID
    room_id: int
    requester_id: str
    start_ts: datetime
    end_ts: datetime
    party_size: int
    purpose: str
    status: str
    hold_expiry: datetime | None
    created_at: datetime

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationOut":
        return cls(
            id=reservation.id,
            room_id=reservation.room_id,
            requester_id=reservation.requester_id,
            start_ts=reservation.start_ts,
            end_ts=reservation.end_ts,
            party_size=reservation.party_size,
            purpose=reservation.purpose,
            status=reservation.status.value,
            hold_expiry=reservation.hold_expiry,
            created_at=reservation.created_at,
        )


class RoomOut(BaseModel):
    id: int
    name: str
    capacity: int
    has_projector: bool
    location: str | None = None


class SlotOut(BaseModel):
    label: str
    start_ts: datetime
    end_ts: datetime
    available: bool


class AvailabilityOut(BaseModel):
    room_id: int
    day: date
    slots: list[SlotOut]


class SlotGridOut(BaseModel):
    timezone: str
    slot_minutes: int
    slots: list[str]


class SweepOut(BaseModel):
    ok: bool
    cancelled: int
    failed: int
