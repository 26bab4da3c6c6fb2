"""Run one maintenance pass: refresh admin payment stats, delete expired idempotency keys.

Intended for cron when the in-process loop is disabled (MAINTENANCE_INTERVAL_SECONDS=0):

    0 * * * * python -m scripts.run_maintenance
"""

import asyncio
import json

from pilgrim_payments.core.config import get_settings
from pilgrim_payments.core.logging import configure_structlog
from pilgrim_payments.db import close_db, close_redis, init_db, init_redis
from pilgrim_payments.services.maintenance_service import MaintenanceService


async def main() -> None:
    configure_structlog(log_level="INFO", json_logs=True, api_version=get_settings().api_version)

    await init_db()
    await init_redis()
    try:
        result = await MaintenanceService().run_maintenance()
        print(json.dumps(result, indent=2))
    finally:
        await close_redis()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
