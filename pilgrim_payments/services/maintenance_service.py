"""Scheduled maintenance: expired idempotency-key cleanup and admin stats refresh.

Runs hourly, in-process via ``MaintenanceLoop`` or externally through
``POST /scheduled-maintenance`` / ``scripts/run_maintenance.py``. This is the
only component that deletes idempotency keys; expired pending rows left by
crashed payment attempts are reclaimed here.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from redis.asyncio import Redis
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pilgrim_payments.core.config import Settings, get_settings
from pilgrim_payments.db.base import get_session_factory
from pilgrim_payments.db.models.booking import Booking
from pilgrim_payments.db.models.idempotency_key import PaymentIdempotencyKey
from pilgrim_payments.db.models.transaction import PaymentStatus, Transaction
from pilgrim_payments.db.redis import cache_key, get_redis, stats_cache_enabled
from pilgrim_payments.services.receipts import isoformat_z, json_number

logger = structlog.get_logger(__name__)

STATS_CACHE_KEY = cache_key("admin", "payment_stats")


class MaintenanceService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        redis: Redis | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self._factory = session_factory or get_session_factory()
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis if self._redis is not None else get_redis()

    @property
    def cache_enabled(self) -> bool:
        return self._redis is not None or stats_cache_enabled()

    async def cleanup_old_data(self, now: datetime | None = None) -> dict:
        """Delete every idempotency key past its ``expires_at``, whatever its status.

        Returns:
            {"expired_idempotency_keys": total, "by_status": {status: count}}
        """
        now = now or datetime.now(UTC)
        expired = PaymentIdempotencyKey.expires_at < now

        async with self._factory() as session:
            counts = await session.execute(
                select(PaymentIdempotencyKey.status, func.count())
                .where(expired)
                .group_by(PaymentIdempotencyKey.status)
            )
            by_status = {status: count for status, count in counts.all()}

            await session.execute(delete(PaymentIdempotencyKey).where(expired))
            await session.commit()

        total = sum(by_status.values())
        logger.info("expired_idempotency_keys_deleted", total=total, by_status=by_status)
        return {"expired_idempotency_keys": total, "by_status": by_status}

    async def compute_admin_stats(self, now: datetime | None = None) -> dict:
        now = now or datetime.now(UTC)

        async with self._factory() as session:
            tx_counts = await session.execute(
                select(Transaction.payment_status, func.count()).group_by(Transaction.payment_status)
            )
            revenue = await session.execute(
                select(Transaction.currency, func.sum(Transaction.amount))
                .where(Transaction.payment_status == PaymentStatus.COMPLETED.value)
                .group_by(Transaction.currency)
            )
            booking_counts = await session.execute(
                select(Booking.status, func.count()).group_by(Booking.status)
            )

            transactions_by_status = {status: count for status, count in tx_counts.all()}
            revenue_by_currency = {
                currency: json_number(total) for currency, total in revenue.all() if total is not None
            }
            bookings_by_status = {status: count for status, count in booking_counts.all()}

        return {
            "transactions_by_status": transactions_by_status,
            "total_transactions": sum(transactions_by_status.values()),
            "completed_revenue_by_currency": revenue_by_currency,
            "bookings_by_status": bookings_by_status,
            "generated_at": isoformat_z(now),
        }

    async def refresh_admin_stats(self, now: datetime | None = None) -> dict:
        """Recompute the admin payment statistics and cache them in Redis."""
        stats = await self.compute_admin_stats(now)
        await self.redis.set(STATS_CACHE_KEY, json.dumps(stats), ex=self.settings.stats_cache_ttl_seconds)
        logger.info("admin_stats_refreshed", total_transactions=stats["total_transactions"])
        return stats

    async def get_admin_stats(self) -> dict:
        """Return the cached snapshot, refreshing it on a cache miss.

        Without a stats cache the snapshot is computed on every call.
        """
        if not self.cache_enabled:
            return await self.compute_admin_stats()
        cached = await self.redis.get(STATS_CACHE_KEY)
        if cached:
            return json.loads(cached)
        return await self.refresh_admin_stats()

    async def run_maintenance(self, now: datetime | None = None) -> dict:
        """Refresh stats and clean up. One step failing does not stop the other."""
        now = now or datetime.now(UTC)
        errors: dict[str, str | None] = {"refresh": None, "cleanup": None}

        stats_refreshed = False
        try:
            await self.refresh_admin_stats(now)
            stats_refreshed = True
        except Exception as exc:
            errors["refresh"] = str(exc)
            logger.warning("admin_stats_refresh_failed", error=str(exc), error_type=type(exc).__name__)

        cleanup = None
        try:
            cleanup = await self.cleanup_old_data(now)
        except Exception as exc:
            errors["cleanup"] = str(exc)
            logger.warning("cleanup_failed", error=str(exc), error_type=type(exc).__name__)

        return {
            "success": True,
            "stats_refreshed": stats_refreshed,
            "cleanup": cleanup,
            "errors": errors,
            "executed_at": isoformat_z(now),
        }


class MaintenanceLoop:
    """Background asyncio task that runs maintenance every ``interval`` seconds.

    Usage:
        loop = MaintenanceLoop(MaintenanceService, interval=3600)
        loop.start()
        ...
        await loop.stop()
    """

    def __init__(self, service_factory: Callable[[], MaintenanceService], interval: float) -> None:
        self.service_factory = service_factory
        self.interval = interval
        self.runs = 0
        self._task: asyncio.Task | None = None

    async def run(self) -> None:
        logger.info("maintenance_loop_started", interval_seconds=self.interval)
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = await self.service_factory().run_maintenance()
                self.runs += 1
                logger.info("maintenance_run_complete", errors=result["errors"])
            except Exception as exc:
                # Non-fatal: the next tick tries again
                logger.warning("maintenance_run_failed", error=str(exc), error_type=type(exc).__name__)

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("maintenance_loop_stopped")


def get_maintenance_service() -> MaintenanceService:
    """FastAPI dependency returning a service bound to the shared DB and Redis."""
    return MaintenanceService()
