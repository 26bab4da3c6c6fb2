"""Idempotent payment processor.

Guarantees exactly one transaction row and one booking status transition per
successful idempotency key, no matter how often the client retries. Every
failure after the key is claimed releases it (``failed``) so the client may
retry with the same key.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pilgrim_payments.core.auth import AuthUser
from pilgrim_payments.core.config import Settings, get_settings
from pilgrim_payments.core.exceptions import ApiError, ErrorCode
from pilgrim_payments.core.logging import payment_log_context
from pilgrim_payments.db.base import get_session_factory
from pilgrim_payments.db.models.booking import PAYABLE_STATUSES, Booking, BookingStatus
from pilgrim_payments.db.models.booking_activity import BookingActivity
from pilgrim_payments.db.models.transaction import PaymentStatus, Transaction
from pilgrim_payments.schemas.payments import (
    IDEMPOTENCY_KEY_MAX_LENGTH,
    IDEMPOTENCY_KEY_MIN_LENGTH,
    IDEMPOTENCY_KEY_PATTERN,
    REQUIRED_FIELDS,
    ProcessPaymentRequest,
)
from pilgrim_payments.services.idempotency import ClaimOutcome, IdempotencyStore, request_fingerprint
from pilgrim_payments.services.receipts import build_receipt, generate_payment_reference

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaymentCommand:
    """A fully validated payment instruction."""

    booking_id: str
    amount: int | float
    currency: str
    payment_method: str
    idempotency_key: str
    metadata: dict


def _is_missing(name: str, value: Any) -> bool:
    if name == "amount" and value == 0:
        return True
    return value is None or value == ""


def parse_payment_request(payload: dict, settings: Settings | None = None) -> PaymentCommand:
    """Validate a raw request body into a ``PaymentCommand``.

    Raises:
        ApiError: VALIDATION_002 for missing fields, VALIDATION_001 for a
            malformed idempotency key, VALIDATION_003 for anything else.
    """
    settings = settings or get_settings()

    missing = [name for name in REQUIRED_FIELDS if _is_missing(name, payload.get(name))]
    if missing:
        raise ApiError(
            ErrorCode.VALIDATION_002,
            f"booking_id, amount, and idempotency_key are required (missing: {', '.join(missing)})",
        )

    key = payload["idempotency_key"]
    if not isinstance(key, str):
        raise ApiError(ErrorCode.VALIDATION_003, "idempotency_key must be a string")
    if not IDEMPOTENCY_KEY_MIN_LENGTH <= len(key) <= IDEMPOTENCY_KEY_MAX_LENGTH:
        raise ApiError(ErrorCode.VALIDATION_001)
    if not IDEMPOTENCY_KEY_PATTERN.fullmatch(key):
        raise ApiError(
            ErrorCode.VALIDATION_001,
            "Idempotency key may only contain letters, digits, '-' and '_'",
        )

    try:
        request = ProcessPaymentRequest.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise ApiError(ErrorCode.VALIDATION_003, f"Invalid value for: {', '.join(fields)}") from exc

    payment_method = request.payment_method or settings.default_payment_method
    if payment_method not in settings.allowed_payment_methods:
        raise ApiError(
            ErrorCode.VALIDATION_003,
            f"payment_method must be one of: {', '.join(settings.allowed_payment_methods)}",
        )

    return PaymentCommand(
        booking_id=request.booking_id,
        amount=request.amount,
        currency=request.currency or settings.default_currency,
        payment_method=payment_method,
        idempotency_key=request.idempotency_key,
        metadata=request.metadata or {},
    )


class PaymentProcessor:
    """Processes payment instructions with at-most-once side effects per key."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        idempotency: IdempotencyStore | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self._factory = session_factory or get_session_factory()
        self.idempotency = idempotency or IdempotencyStore(self._factory)

    async def process_payment(self, user: AuthUser, payload: dict) -> dict:
        """Validate, claim the idempotency key, charge once, and return the receipt."""
        command = parse_payment_request(payload, self.settings)
        with payment_log_context(command.idempotency_key, command.booking_id, user.user_id):
            return await self._process(user, command)

    async def _process(self, user: AuthUser, command: PaymentCommand) -> dict:
        key = command.idempotency_key
        request_hash = request_fingerprint(command.booking_id, command.amount, command.currency)
        claim = await self.idempotency.claim(key, command.booking_id, user.user_id, request_hash)

        if claim.outcome is ClaimOutcome.REPLAY:
            if claim.user_id != user.user_id:
                logger.warning("payment_replay_wrong_user")
                raise ApiError(ErrorCode.AUTH_002, "This idempotency key belongs to another user")
            if claim.request_hash != request_hash:
                logger.warning("payment_replay_mismatch")
                raise ApiError(ErrorCode.PAYMENT_006)
            logger.info("payment_replayed")
            return claim.response_data

        if claim.outcome is ClaimOutcome.IN_FLIGHT:
            logger.info("payment_in_flight")
            raise ApiError(ErrorCode.PAYMENT_005)

        try:
            receipt = await self._execute(user, command)
        except ApiError as exc:
            logger.info("payment_rejected", code=exc.code.value)
            await self._release(key)
            raise
        except Exception:
            logger.error("payment_processing_error", exc_info=True)
            await self._release(key)
            raise

        await self.idempotency.mark_completed(key, receipt)
        logger.info(
            "payment_completed",
            transaction_id=receipt["transaction_id"],
            payment_reference=receipt["payment_reference"],
        )
        return receipt

    async def _release(self, key: str) -> None:
        """Mark the key failed; a failure here leaves it for expiry to reclaim."""
        try:
            await self.idempotency.mark_failed(key)
        except SQLAlchemyError as exc:
            logger.error(
                "idempotency_release_failed",
                idempotency_key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def _execute(self, user: AuthUser, command: PaymentCommand) -> dict:
        async with self._factory() as session:
            booking = await session.get(Booking, command.booking_id)
            if booking is None:
                raise ApiError(ErrorCode.BOOKING_003)
            if booking.traveler_id != user.user_id:
                raise ApiError(ErrorCode.AUTH_002, "You do not have permission to pay for this booking")
            if booking.status not in PAYABLE_STATUSES:
                raise ApiError(ErrorCode.BOOKING_004)

            transaction = Transaction(
                booking_id=command.booking_id,
                user_id=user.user_id,
                amount=Decimal(str(command.amount)),
                currency=command.currency,
                payment_method=command.payment_method,
                payment_status=PaymentStatus.PROCESSING.value,
                payment_metadata=command.metadata,
                idempotency_key=command.idempotency_key,
            )
            session.add(transaction)
            try:
                await session.flush()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("transaction_create_failed", booking_id=command.booking_id, error=str(exc))
                raise ApiError(ErrorCode.PAYMENT_001) from exc

            processed_at = datetime.now(UTC)
            payment_reference = generate_payment_reference(int(processed_at.timestamp() * 1000))

            transaction.payment_status = PaymentStatus.COMPLETED.value
            transaction.payment_reference = payment_reference
            transaction.processed_at = processed_at
            booking.status = BookingStatus.ACCEPTED.value
            session.add(
                BookingActivity(
                    booking_id=command.booking_id,
                    actor_id=user.user_id,
                    action="payment_completed",
                    details={
                        "transaction_id": transaction.id,
                        "amount": command.amount,
                        "currency": command.currency,
                        "payment_reference": payment_reference,
                    },
                )
            )

            # Transaction completion, booking transition and activity commit together.
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("transaction_commit_failed", booking_id=command.booking_id, error=str(exc))
                raise ApiError(ErrorCode.PAYMENT_001) from exc

            return build_receipt(
                transaction_id=transaction.id,
                booking_id=command.booking_id,
                amount=command.amount,
                currency=command.currency,
                payment_reference=payment_reference,
                processed_at=processed_at,
            )


def get_payment_processor() -> PaymentProcessor:
    """FastAPI dependency returning a processor bound to the shared session factory."""
    return PaymentProcessor()
