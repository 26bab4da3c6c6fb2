"""Transaction model: append-only ledger of payment attempts."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Numeric, String

from pilgrim_payments.db.base import Base


class PaymentStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=True, index=True)
    user_id = Column(String(255), nullable=True, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=True, default="SAR")
    payment_method = Column(String(50), nullable=True)
    payment_status = Column(String(50), nullable=False, default=PaymentStatus.PROCESSING.value)
    payment_reference = Column(String(64), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    payment_metadata = Column("metadata", JSON, nullable=True)

    # The idempotency key that produced this row; the ledger is the source of truth
    # for "already charged" when the key cache lags behind.
    idempotency_key = Column(String(64), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
