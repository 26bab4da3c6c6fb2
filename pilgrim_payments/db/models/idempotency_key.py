"""PaymentIdempotencyKey model: one row per logical payment attempt."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Integer, String

from pilgrim_payments.db.base import Base


class IdempotencyStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentIdempotencyKey(Base):
    """Client-supplied key guarding at-most-once payment execution.

    The primary key on ``idempotency_key`` is the unique constraint that makes
    the first INSERT the sole serialization point between concurrent retries.
    """

    __tablename__ = "payment_idempotency_keys"

    idempotency_key = Column(String(64), primary_key=True)
    booking_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)

    status = Column(String(20), nullable=False, default=IdempotencyStatus.PENDING.value)
    request_hash = Column(String(64), nullable=False)
    response_data = Column(JSON, nullable=True)

    # Bumped on every takeover of a failed/expired row (optimistic lock)
    attempts = Column(Integer, nullable=False, default=1)

    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
