"""Booking model: the unit of service purchase whose status payments advance."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, Numeric, String

from pilgrim_payments.db.base import Base


class BookingStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


# Payment is only accepted while the booking has not started.
PAYABLE_STATUSES = frozenset({BookingStatus.PENDING.value, BookingStatus.ACCEPTED.value})


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    traveler_id = Column(String(255), nullable=True, index=True)
    provider_id = Column(String(255), nullable=True, index=True)
    service_id = Column(String(36), nullable=True)

    status = Column(String(50), nullable=False, default=BookingStatus.PENDING.value)  # BookingStatus values
    total_amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True, default="SAR")

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
