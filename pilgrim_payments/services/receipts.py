"""Payment receipt payloads and reference generation."""

import time
from datetime import UTC, datetime
from decimal import Decimal

from pilgrim_payments.db.models.transaction import Transaction
from pilgrim_payments.middleware.correlation import to_base36


def isoformat_z(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def json_number(value: Decimal | float | int) -> float | int:
    """Render a money amount as the JSON number a client would have sent."""
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def generate_payment_reference(now_ms: int | None = None) -> str:
    """``PAY_`` followed by the upper-cased base-36 epoch milliseconds."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"PAY_{to_base36(now_ms).upper()}"


def build_receipt(
    transaction_id: str,
    booking_id: str,
    amount: float | int,
    currency: str,
    payment_reference: str,
    processed_at: datetime,
) -> dict:
    return {
        "transaction_id": transaction_id,
        "booking_id": booking_id,
        "status": "completed",
        "amount": json_number(amount),
        "currency": currency,
        "payment_reference": payment_reference,
        "processed_at": isoformat_z(processed_at),
    }


def receipt_from_transaction(transaction: Transaction) -> dict:
    """Rebuild a receipt from a committed ledger row."""
    return build_receipt(
        transaction_id=transaction.id,
        booking_id=transaction.booking_id,
        amount=transaction.amount,
        currency=transaction.currency,
        payment_reference=transaction.payment_reference,
        processed_at=transaction.processed_at or transaction.created_at,
    )
