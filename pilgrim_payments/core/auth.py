"""Bearer-token authentication for FastAPI.

Session tokens are HS256 JWTs issued by the hosted auth provider. Failures are
raised as ``ApiError`` so they reach the caller inside the response envelope.
"""

from dataclasses import dataclass

import jwt as pyjwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pilgrim_payments.core.config import get_settings
from pilgrim_payments.core.exceptions import ApiError, ErrorCode

_bearer_scheme = HTTPBearer(auto_error=False)

SERVICE_ROLE = "service_role"


@dataclass(frozen=True)
class AuthUser:
    """Authenticated caller extracted from a session token."""

    user_id: str
    role: str
    claims: dict


def decode_session_token(token: str) -> AuthUser:
    """Verify and decode a session JWT.

    Raises ``ApiError(AUTH_001)`` on any validation failure.
    """
    settings = get_settings()
    if not settings.jwt_secret:
        raise ApiError(ErrorCode.AUTH_001, "Authentication is not configured")

    try:
        payload = pyjwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            options={"require": ["sub", "exp"]},
        )
    except pyjwt.ExpiredSignatureError:
        raise ApiError(ErrorCode.AUTH_001, "Invalid or expired session")
    except pyjwt.InvalidTokenError:
        raise ApiError(ErrorCode.AUTH_001, "Invalid or expired session")

    sub = payload.get("sub")
    if not sub:
        raise ApiError(ErrorCode.AUTH_001, "Invalid or expired session")

    return AuthUser(user_id=str(sub), role=payload.get("role", "authenticated"), claims=payload)


async def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthUser:
    """FastAPI dependency that resolves the paying user from the bearer token.

    Usage::

        @router.post("/process-payment")
        async def pay(user: AuthUser = Depends(require_user)):
            ...
    """
    if credentials is None:
        raise ApiError(ErrorCode.AUTH_001)

    user = decode_session_token(credentials.credentials)

    # Set user_id on request state for downstream use (error handlers)
    request.state.user_id = user.user_id

    return user


async def require_service_role(user: AuthUser = Depends(require_user)) -> AuthUser:
    """FastAPI dependency that only admits service-role tokens (cron, admins)."""
    if user.role != SERVICE_ROLE:
        raise ApiError(ErrorCode.AUTH_002, "Service role required")
    return user
