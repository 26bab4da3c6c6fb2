"""Maintenance routes: hourly cleanup trigger and cached admin payment stats."""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from pilgrim_payments.api.envelope import CORS_HEADERS, success_response
from pilgrim_payments.core.auth import AuthUser, require_service_role
from pilgrim_payments.services.maintenance_service import MaintenanceService, get_maintenance_service

router = APIRouter()


@router.options("/scheduled-maintenance", include_in_schema=False)
async def scheduled_maintenance_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/scheduled-maintenance")
async def scheduled_maintenance(
    _: AuthUser = Depends(require_service_role),
    service: MaintenanceService = Depends(get_maintenance_service),
):
    """Refresh admin stats and delete expired idempotency keys.

    Called by cron every hour; can also be triggered manually with a
    service-role token.
    """
    result = await service.run_maintenance()
    return JSONResponse(content=result, headers=CORS_HEADERS)


@router.get("/admin/payment-stats")
async def admin_payment_stats(
    _: AuthUser = Depends(require_service_role),
    service: MaintenanceService = Depends(get_maintenance_service),
):
    return success_response(await service.get_admin_stats())
