"""Tests for bearer-token authentication."""

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from starlette.requests import Request

from pilgrim_payments.core.auth import (
    AuthUser,
    decode_session_token,
    require_service_role,
    require_user,
)
from pilgrim_payments.core.exceptions import ApiError, ErrorCode
from tests.conftest import make_token

pytestmark = pytest.mark.unit


def _request() -> Request:
    return Request({"type": "http", "method": "POST", "path": "/", "headers": []})


class TestDecodeSessionToken:
    def test_valid_token(self):
        user = decode_session_token(make_token("u1"))
        assert user.user_id == "u1"
        assert user.role == "authenticated"
        assert user.claims["sub"] == "u1"

    def test_expired_token(self):
        with pytest.raises(ApiError) as exc_info:
            decode_session_token(make_token("u1", expires_in=-60))
        assert exc_info.value.code == ErrorCode.AUTH_001
        assert exc_info.value.description == "Invalid or expired session"

    def test_wrong_audience(self):
        with pytest.raises(ApiError) as exc_info:
            decode_session_token(make_token("u1", aud="someone-else"))
        assert exc_info.value.code == ErrorCode.AUTH_001

    def test_garbage_token(self):
        with pytest.raises(ApiError) as exc_info:
            decode_session_token("not-a-jwt")
        assert exc_info.value.code == ErrorCode.AUTH_001

    def test_token_signed_with_other_secret(self):
        import jwt as pyjwt

        forged = pyjwt.encode({"sub": "u1", "aud": "authenticated", "exp": 9999999999}, "wrong-secret-wrong-secret-wrong-secret", algorithm="HS256")
        with pytest.raises(ApiError) as exc_info:
            decode_session_token(forged)
        assert exc_info.value.code == ErrorCode.AUTH_001


class TestDependencies:
    async def test_missing_credentials(self):
        with pytest.raises(ApiError) as exc_info:
            await require_user(_request(), None)
        assert exc_info.value.code == ErrorCode.AUTH_001
        assert exc_info.value.status_code == 401

    async def test_sets_user_id_on_request_state(self):
        request = _request()
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=make_token("u7"))
        user = await require_user(request, creds)
        assert user.user_id == "u7"
        assert request.state.user_id == "u7"

    async def test_service_role_required(self):
        with pytest.raises(ApiError) as exc_info:
            await require_service_role(AuthUser(user_id="u1", role="authenticated", claims={}))
        assert exc_info.value.code == ErrorCode.AUTH_002

    async def test_service_role_admitted(self):
        admin = AuthUser(user_id="cron", role="service_role", claims={})
        assert await require_service_role(admin) is admin
