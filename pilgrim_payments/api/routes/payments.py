"""Payment routes: the idempotent ``/process-payment`` endpoint."""

import structlog
from fastapi import APIRouter, Depends, Request, Response

from pilgrim_payments.api.envelope import CORS_HEADERS, error_response, success_response
from pilgrim_payments.core.auth import AuthUser, require_user
from pilgrim_payments.core.exceptions import ApiError, ErrorCode
from pilgrim_payments.services.payment_service import PaymentProcessor, get_payment_processor

logger = structlog.get_logger(__name__)

router = APIRouter()

IDEMPOTENCY_HEADER = "X-Idempotency-Key"


@router.options("/process-payment", include_in_schema=False)
async def process_payment_preflight():
    """CORS preflight."""
    return Response(status_code=200, headers=CORS_HEADERS)


@router.api_route("/process-payment", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def process_payment_method_not_allowed():
    return error_response(ApiError(ErrorCode.METHOD_NOT_ALLOWED))


@router.post("/process-payment")
async def process_payment(
    request: Request,
    user: AuthUser = Depends(require_user),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """Process a payment exactly once per idempotency key.

    Retries with the same key replay the original receipt; retries while the
    first attempt is still running are rejected with PAYMENT_005.
    """
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ApiError(ErrorCode.VALIDATION_003, "Request body must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise ApiError(ErrorCode.VALIDATION_003, "Request body must be a JSON object")

    header_key = request.headers.get(IDEMPOTENCY_HEADER)
    if header_key and not payload.get("idempotency_key"):
        payload["idempotency_key"] = header_key

    try:
        receipt = await processor.process_payment(user, payload)
    except ApiError:
        raise
    except Exception as exc:
        logger.error(
            "payment_unhandled_exception",
            user_id=user.user_id,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        raise ApiError(ErrorCode.SYSTEM_001) from exc

    return success_response(receipt)
