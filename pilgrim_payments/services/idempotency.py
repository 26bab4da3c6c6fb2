"""Idempotency-key lifecycle for payment attempts.

A key moves ``pending -> completed`` on success or ``pending -> failed`` on any
error. Admission is decided by the unique constraint on the key column: the
caller whose INSERT commits owns the attempt; a conflicting caller branches
into the existing-key path and never pre-checks existence with a separate read.

Existing-key resolution:
  - completed                  -> replay the stored response
  - committed ledger row found -> repair the cache row, replay from the ledger
  - pending, not yet expired   -> in flight, reject
  - failed, or pending expired -> take over with a conditional UPDATE guarded
                                  by (status, attempts); zero rows means another
                                  caller won the takeover
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from pilgrim_payments.core.config import get_settings
from pilgrim_payments.db.base import get_session_factory
from pilgrim_payments.db.models.idempotency_key import IdempotencyStatus, PaymentIdempotencyKey
from pilgrim_payments.db.models.transaction import PaymentStatus, Transaction
from pilgrim_payments.services.receipts import json_number, receipt_from_transaction

logger = structlog.get_logger(__name__)

# Bounded re-entry into the insert path when an expired row is swept between
# our failed INSERT and the follow-up read.
_MAX_CLAIM_ROUNDS = 3


class ClaimOutcome(str, Enum):
    ACQUIRED = "acquired"
    REPLAY = "replay"
    IN_FLIGHT = "in_flight"


@dataclass(frozen=True)
class ClaimResult:
    outcome: ClaimOutcome
    user_id: str | None = None
    request_hash: str | None = None
    response_data: dict | None = None


def request_fingerprint(booking_id: str, amount: float | int, currency: str) -> str:
    """SHA-256 hex digest of the canonical ``{booking_id, amount, currency}`` JSON."""
    canonical = json.dumps(
        {"booking_id": booking_id, "amount": json_number(amount), "currency": currency},
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _as_utc(moment: datetime) -> datetime:
    # SQLite hands timestamps back naive; they are always written in UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


class IdempotencyStore:
    """Durable idempotency-key table operations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        ttl_hours: int | None = None,
        writeback_attempts: int | None = None,
    ):
        settings = get_settings()
        self._factory = session_factory or get_session_factory()
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.idempotency_key_ttl_hours)
        self.writeback_attempts = writeback_attempts or settings.completion_writeback_attempts

    async def claim(
        self,
        key: str,
        booking_id: str,
        user_id: str,
        request_hash: str,
        now: datetime | None = None,
    ) -> ClaimResult:
        """Admit the caller as the sole pending owner of ``key``, or report why not."""
        now = now or datetime.now(UTC)
        log = logger.bind(idempotency_key=key, booking_id=booking_id, user_id=user_id)

        for _ in range(_MAX_CLAIM_ROUNDS):
            if await self._insert_pending(key, booking_id, user_id, request_hash, now):
                log.info("idempotency_key_claimed")
                return ClaimResult(ClaimOutcome.ACQUIRED, user_id=user_id, request_hash=request_hash)

            result = await self._resolve_existing(key, booking_id, user_id, request_hash, now)
            if result is not None:
                log.info("idempotency_key_resolved", outcome=result.outcome.value)
                return result

        log.warning("idempotency_claim_contended")
        return ClaimResult(ClaimOutcome.IN_FLIGHT)

    async def _insert_pending(
        self,
        key: str,
        booking_id: str,
        user_id: str,
        request_hash: str,
        now: datetime,
    ) -> bool:
        """Return True if the row was created (claimed). False on key conflict."""
        async with self._factory() as session:
            try:
                session.add(
                    PaymentIdempotencyKey(
                        idempotency_key=key,
                        booking_id=booking_id,
                        user_id=user_id,
                        status=IdempotencyStatus.PENDING.value,
                        request_hash=request_hash,
                        attempts=1,
                        expires_at=now + self.ttl,
                        created_at=now,
                        updated_at=now,
                    )
                )
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False

    async def _resolve_existing(
        self,
        key: str,
        booking_id: str,
        user_id: str,
        request_hash: str,
        now: datetime,
    ) -> ClaimResult | None:
        """Branch on the conflicting row. None means the row vanished; retry the insert."""
        async with self._factory() as session:
            result = await session.execute(
                select(PaymentIdempotencyKey).where(PaymentIdempotencyKey.idempotency_key == key)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None

            if row.status == IdempotencyStatus.COMPLETED.value and row.response_data is not None:
                return ClaimResult(
                    ClaimOutcome.REPLAY,
                    user_id=row.user_id,
                    request_hash=row.request_hash,
                    response_data=row.response_data,
                )

            committed = await self._find_committed_transaction(session, key)
            if committed is not None:
                receipt = receipt_from_transaction(committed)
                await self._repair_completed(session, row, receipt, now)
                logger.warning("idempotency_key_repaired_from_ledger", idempotency_key=key, transaction_id=committed.id)
                return ClaimResult(
                    ClaimOutcome.REPLAY,
                    user_id=row.user_id,
                    request_hash=row.request_hash,
                    response_data=receipt,
                )

            if row.status == IdempotencyStatus.PENDING.value and _as_utc(row.expires_at) > now:
                return ClaimResult(ClaimOutcome.IN_FLIGHT, user_id=row.user_id, request_hash=row.request_hash)

            # failed, or an orphaned pending row whose owner never finished
            takeover = await session.execute(
                update(PaymentIdempotencyKey)
                .where(
                    PaymentIdempotencyKey.idempotency_key == key,
                    PaymentIdempotencyKey.status == row.status,
                    PaymentIdempotencyKey.attempts == row.attempts,
                )
                .values(
                    status=IdempotencyStatus.PENDING.value,
                    booking_id=booking_id,
                    user_id=user_id,
                    request_hash=request_hash,
                    response_data=None,
                    completed_at=None,
                    attempts=row.attempts + 1,
                    expires_at=now + self.ttl,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

            if takeover.rowcount == 1:
                logger.info("idempotency_key_taken_over", idempotency_key=key, previous_status=row.status)
                return ClaimResult(ClaimOutcome.ACQUIRED, user_id=user_id, request_hash=request_hash)
            return ClaimResult(ClaimOutcome.IN_FLIGHT)

    async def _find_committed_transaction(self, session: AsyncSession, key: str) -> Transaction | None:
        result = await session.execute(
            select(Transaction).where(
                Transaction.idempotency_key == key,
                Transaction.payment_status == PaymentStatus.COMPLETED.value,
            )
        )
        return result.scalar_one_or_none()

    async def _repair_completed(
        self,
        session: AsyncSession,
        row: PaymentIdempotencyKey,
        receipt: dict,
        now: datetime,
    ) -> None:
        row.status = IdempotencyStatus.COMPLETED.value
        row.response_data = receipt
        row.completed_at = now
        row.updated_at = now
        await session.commit()

    async def mark_failed(self, key: str) -> None:
        """Release a pending key so the client can retry with it."""
        async with self._factory() as session:
            await session.execute(
                update(PaymentIdempotencyKey)
                .where(
                    PaymentIdempotencyKey.idempotency_key == key,
                    PaymentIdempotencyKey.status == IdempotencyStatus.PENDING.value,
                )
                .values(
                    status=IdempotencyStatus.FAILED.value,
                    response_data=None,
                    completed_at=None,
                    updated_at=datetime.now(UTC),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        logger.info("idempotency_key_failed", idempotency_key=key)

    async def mark_completed(self, key: str, response_data: dict) -> bool:
        """Persist the success payload for replay.

        Retried on database errors. A final failure is logged and reported as
        False; the ledger row written by the payment still marks the key as
        consumed, so later replays are repaired from it.
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(SQLAlchemyError),
                stop=stop_after_attempt(self.writeback_attempts),
                wait=wait_exponential(multiplier=0.05, max=1),
                reraise=True,
                before_sleep=lambda rs: logger.warning(
                    "idempotency_writeback_retrying",
                    idempotency_key=key,
                    attempt=rs.attempt_number,
                ),
            ):
                with attempt:
                    await self._write_completion(key, response_data)
        except SQLAlchemyError as exc:
            logger.error(
                "idempotency_writeback_failed",
                idempotency_key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False
        return True

    async def _write_completion(self, key: str, response_data: dict) -> None:
        now = datetime.now(UTC)
        async with self._factory() as session:
            await session.execute(
                update(PaymentIdempotencyKey)
                .where(
                    PaymentIdempotencyKey.idempotency_key == key,
                    PaymentIdempotencyKey.status != IdempotencyStatus.COMPLETED.value,
                )
                .values(
                    status=IdempotencyStatus.COMPLETED.value,
                    response_data=response_data,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
