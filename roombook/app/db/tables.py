from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    TypeDecorator,
    Uuid,
)


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


LIVE_STATUSES = (ReservationStatus.PENDING.value, ReservationStatus.CONFIRMED.value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    SQLite has no timestamptz, so values are stored as naive UTC there and
    re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            raise ValueError("naive datetime bound to a UTC column")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


metadata = MetaData()

rooms = Table(
    "rooms",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", Text, nullable=False),
    Column("capacity", Integer, nullable=False),
    Column("has_projector", Boolean, nullable=False, default=False),
    Column("location", Text, nullable=True),
    CheckConstraint("capacity > 0", name="rooms_capacity_positive"),
)

reservations = Table(
    "reservations",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("room_id", Integer, ForeignKey("rooms.id"), nullable=False),
    Column("requester_id", Text, nullable=False),
    Column("start_ts", UTCDateTime, nullable=False),
    Column("end_ts", UTCDateTime, nullable=False),
    Column("party_size", Integer, nullable=False),
    Column("purpose", Text, nullable=False, default=""),
    Column("status", Text, nullable=False),
    Column("hold_expiry", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    CheckConstraint("start_ts < end_ts", name="reservations_valid_timerange"),
    CheckConstraint("party_size > 0", name="reservations_party_positive"),
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'cancelled')",
        name="reservations_status_known",
    ),
    CheckConstraint(
        "status <> 'pending' OR hold_expiry IS NOT NULL",
        name="reservations_pending_has_expiry",
    ),
)

Index("reservations_room_time_idx", reservations.c.room_id, reservations.c.start_ts, reservations.c.end_ts)
Index("reservations_requester_idx", reservations.c.requester_id)
Index("reservations_status_expiry_idx", reservations.c.status, reservations.c.hold_expiry)


@dataclass(frozen=True)
class Room:
    id: int
    name: str
    capacity: int
    has_projector: bool
    location: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> Room:
        return cls(
            id=row.id,
            name=row.name,
            capacity=row.capacity,
            has_projector=bool(row.has_projector),
            location=row.location,
        )


@dataclass(frozen=True)
class Reservation:
    id: UUID
    room_id: int
    requester_id: str
    start_ts: datetime
    end_ts: datetime
    party_size: int
    purpose: str
    status: ReservationStatus
    hold_expiry: datetime | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> Reservation:
        return cls(
            id=row.id,
            room_id=row.room_id,
            requester_id=row.requester_id,
            start_ts=row.start_ts,
            end_ts=row.end_ts,
            party_size=row.party_size,
            purpose=row.purpose,
            status=ReservationStatus(row.status),
            hold_expiry=row.hold_expiry,
            created_at=row.created_at,
        )

    def is_live(self, now: datetime) -> bool:
        """Whether the reservation still blocks its slots at ``now``."""
        if self.status is ReservationStatus.CONFIRMED:
            return True
        return self.status is ReservationStatus.PENDING and self.hold_expiry is not None and now < self.hold_expiry
