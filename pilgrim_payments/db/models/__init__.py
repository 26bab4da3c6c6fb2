"""Re-export all models so Base.metadata sees them."""

from pilgrim_payments.db.models.booking import Booking
from pilgrim_payments.db.models.booking_activity import BookingActivity
from pilgrim_payments.db.models.idempotency_key import PaymentIdempotencyKey
from pilgrim_payments.db.models.transaction import Transaction

__all__ = [
    "Booking",
    "BookingActivity",
    "PaymentIdempotencyKey",
    "Transaction",
]
