"""HTTP contract tests for POST /process-payment."""

import asyncio
import re

import pytest

from tests.conftest import VALID_KEY, auth_headers

pytestmark = pytest.mark.integration


def _body(**overrides) -> dict:
    body = {"booking_id": "b1", "amount": 500, "idempotency_key": VALID_KEY}
    body.update(overrides)
    return body


def _assert_envelope(payload: dict) -> None:
    assert set(payload) == {"success", "data", "error", "meta"}
    assert set(payload["meta"]) == {"timestamp", "version", "request_id"}
    assert payload["meta"]["version"] == "2026-02-01"
    assert re.fullmatch(r"req_[0-9a-z]+_[0-9a-z]{6}", payload["meta"]["request_id"])


class TestPreflightAndMethods:
    async def test_options_returns_cors_headers(self, api_client):
        response = await api_client.options("/process-payment")

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-headers"] == (
            "authorization, x-client-info, apikey, content-type, x-api-version, x-idempotency-key"
        )
        assert response.headers["access-control-allow-methods"] == "GET, POST, PUT, DELETE, OPTIONS"

    async def test_browser_preflight_gets_exact_cors_headers(self, api_client):
        response = await api_client.options(
            "/process-payment",
            headers={
                "Origin": "https://app.pilgrim.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, content-type",
            },
        )

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-headers"] == (
            "authorization, x-client-info, apikey, content-type, x-api-version, x-idempotency-key"
        )
        assert response.headers["access-control-allow-methods"] == "GET, POST, PUT, DELETE, OPTIONS"

    async def test_cross_origin_post_carries_cors_headers(self, api_client):
        response = await api_client.post(
            "/process-payment", json=_body(), headers={"Origin": "https://app.pilgrim.example"}
        )

        assert response.status_code == 401
        assert response.headers["access-control-allow-origin"] == "*"

    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
    async def test_other_methods_are_405(self, api_client, method):
        response = await api_client.request(method, "/process-payment")

        assert response.status_code == 405
        payload = response.json()
        _assert_envelope(payload)
        assert payload["success"] is False
        assert payload["error"]["code"] == "METHOD_NOT_ALLOWED"


class TestAuthentication:
    async def test_missing_authorization_is_auth_001(self, api_client):
        response = await api_client.post("/process-payment", json=_body())

        assert response.status_code == 401
        payload = response.json()
        _assert_envelope(payload)
        assert payload["data"] is None
        assert payload["error"]["code"] == "AUTH_001"
        assert payload["error"]["message"] == "Authentication required"
        assert response.headers["x-api-version"] == "2026-02-01"

    async def test_invalid_token_is_auth_001(self, api_client):
        response = await api_client.post(
            "/process-payment", json=_body(), headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["description"] == "Invalid or expired session"


class TestValidation:
    async def test_malformed_json(self, api_client):
        response = await api_client.post(
            "/process-payment",
            content=b"{not json",
            headers={**auth_headers(), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_003"

    async def test_missing_fields(self, api_client):
        response = await api_client.post("/process-payment", json={"amount": 5}, headers=auth_headers())
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_002"

    @pytest.mark.parametrize(("length", "status"), [(15, 400), (65, 400)])
    async def test_key_length_bounds(self, api_client, length, status):
        response = await api_client.post(
            "/process-payment", json=_body(idempotency_key="k" * length), headers=auth_headers()
        )
        assert response.status_code == status
        assert response.json()["error"]["code"] == "VALIDATION_001"

    @pytest.mark.parametrize("length", [16, 64])
    async def test_boundary_keys_reach_booking_lookup(self, api_client, length):
        response = await api_client.post(
            "/process-payment", json=_body(idempotency_key="k" * length), headers=auth_headers()
        )
        # Valid key, no booking seeded
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "BOOKING_003"


class TestPaymentFlow:
    async def test_example_scenario(self, api_client, seed_booking):
        await seed_booking("b1", traveler_id="u1", status="pending")

        first = await api_client.post("/process-payment", json=_body(), headers=auth_headers("u1"))
        second = await api_client.post("/process-payment", json=_body(), headers=auth_headers("u1"))

        assert first.status_code == 200
        assert second.status_code == 200
        first_payload, second_payload = first.json(), second.json()
        _assert_envelope(first_payload)
        assert first_payload["success"] is True
        assert first_payload["error"] is None
        assert first_payload["data"]["status"] == "completed"
        assert second_payload["data"] == first_payload["data"]
        assert first_payload["meta"]["request_id"] != second_payload["meta"]["request_id"]
        assert first.headers["x-request-id"] == first_payload["meta"]["request_id"]

    async def test_client_request_id_is_not_reused(self, api_client, seed_booking):
        await seed_booking("b1")
        response = await api_client.post(
            "/process-payment",
            json=_body(),
            headers={**auth_headers(), "X-Request-ID": "client-chosen"},
        )
        assert response.json()["meta"]["request_id"] != "client-chosen"

    async def test_idempotency_key_header_fallback(self, api_client, seed_booking):
        await seed_booking("b1")
        body = _body()
        del body["idempotency_key"]

        response = await api_client.post(
            "/process-payment", json=body, headers={**auth_headers(), "X-Idempotency-Key": VALID_KEY}
        )
        replay = await api_client.post("/process-payment", json=_body(), headers=auth_headers())

        assert response.status_code == 200
        assert replay.json()["data"] == response.json()["data"]

    async def test_wrong_owner_is_403(self, api_client, seed_booking):
        await seed_booking("b1", traveler_id="u1")
        response = await api_client.post("/process-payment", json=_body(), headers=auth_headers("u2"))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "AUTH_002"

    async def test_cancelled_booking_is_409(self, api_client, seed_booking):
        await seed_booking("b1", status="cancelled")
        response = await api_client.post("/process-payment", json=_body(), headers=auth_headers())
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "BOOKING_004"

    async def test_mismatched_replay_is_422(self, api_client, seed_booking):
        await seed_booking("b1")
        await api_client.post("/process-payment", json=_body(), headers=auth_headers())
        response = await api_client.post("/process-payment", json=_body(amount=1), headers=auth_headers())
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "PAYMENT_006"

    async def test_concurrent_requests_charge_once(self, api_client, seed_booking):
        await seed_booking("b1")

        responses = await asyncio.gather(
            *(api_client.post("/process-payment", json=_body(), headers=auth_headers()) for _ in range(4))
        )

        ok = [r for r in responses if r.status_code == 200]
        assert ok
        assert all(r.status_code in (200, 409) for r in responses)
        assert len({r.json()["data"]["transaction_id"] for r in ok}) == 1
        for r in responses:
            if r.status_code == 409:
                assert r.json()["error"]["code"] == "PAYMENT_005"


class TestUnhandledErrors:
    async def test_unexpected_exception_is_system_001(self, app, api_client, seed_booking):
        from pilgrim_payments.services.payment_service import get_payment_processor

        class _Exploding:
            async def process_payment(self, user, payload):
                raise RuntimeError("secret internals")

        app.dependency_overrides[get_payment_processor] = lambda: _Exploding()

        response = await api_client.post("/process-payment", json=_body(), headers=auth_headers())

        assert response.status_code == 500
        payload = response.json()
        _assert_envelope(payload)
        assert payload["error"]["code"] == "SYSTEM_001"
        assert "secret internals" not in response.text
