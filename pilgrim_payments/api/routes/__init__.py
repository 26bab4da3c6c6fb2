from fastapi import APIRouter

from pilgrim_payments.api.routes import health, maintenance, payments

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(payments.router, tags=["payments"])
api_router.include_router(maintenance.router, tags=["maintenance"])
