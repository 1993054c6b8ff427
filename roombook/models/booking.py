"""Booking model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roombook.database import Base
from roombook.domain.booking_state import BookingStatus, is_active
from roombook.domain.interval import Interval
from roombook.models.types import UTCDateTime, utcnow

if TYPE_CHECKING:
    from roombook.models.room import Room
    from roombook.models.user import User


class Booking(Base):
    """Room reservation. Never deleted; cancellation is a status change."""

    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_room_start_end", "room_id", "start_time", "end_time"),
        Index("ix_bookings_start_end", "start_time", "end_time"),
        CheckConstraint("end_time > start_time", name="ck_bookings_interval"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    room_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.CONFIRMED.value, index=True
    )  # PENDING, CONFIRMED, CANCELLED

    # Client-generated key, stored verbatim and never interpreted
    idempotency_key: Mapped[str | None] = mapped_column(String(100))

    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    room: Mapped["Room"] = relationship("Room", back_populates="bookings")
    user: Mapped["User"] = relationship("User", back_populates="bookings")

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)

    @property
    def is_active(self) -> bool:
        return is_active(self.status)
