"""BookingActivity model: append-only audit trail per booking."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String

from pilgrim_payments.db.base import Base


class BookingActivity(Base):
    __tablename__ = "booking_activities"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    actor_id = Column(String(255), nullable=True)
    action = Column(String(100), nullable=False)  # payment_completed, ...
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
