"""Standard response envelope shared by every payment API response."""

from datetime import UTC, datetime
from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pilgrim_payments.core.config import get_settings
from pilgrim_payments.core.exceptions import ApiError
from pilgrim_payments.middleware.correlation import get_request_id

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, x-api-version, x-idempotency-key"
    ),
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
}


class ApiErrorBody(BaseModel):
    code: str
    message: str
    description: str | None = None


class ApiMeta(BaseModel):
    timestamp: str
    version: str
    request_id: str


class StandardResponse(BaseModel):
    success: bool
    data: Any = None
    error: ApiErrorBody | None = None
    meta: ApiMeta


def _build_meta(request_id: str | None = None) -> ApiMeta:
    return ApiMeta(
        timestamp=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        version=get_settings().api_version,
        request_id=request_id or get_request_id(),
    )


def envelope_response(
    data: Any,
    error: ApiErrorBody | None,
    status_code: int,
    request_id: str | None = None,
) -> JSONResponse:
    """Wrap ``data`` or ``error`` in the envelope and attach version and CORS headers."""
    body = StandardResponse(
        success=error is None,
        data=data,
        error=error,
        meta=_build_meta(request_id),
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=False),
        headers={**CORS_HEADERS, "X-API-Version": get_settings().api_version},
    )


def success_response(data: Any, request_id: str | None = None) -> JSONResponse:
    return envelope_response(data, None, 200, request_id)


def error_response(exc: ApiError, request_id: str | None = None) -> JSONResponse:
    error = ApiErrorBody(code=exc.code.value, message=exc.message, description=exc.description)
    return envelope_response(None, error, exc.status_code, request_id)
