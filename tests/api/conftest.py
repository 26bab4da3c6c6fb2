"""API-specific test fixtures."""

from contextlib import asynccontextmanager

import httpx
import pytest
from fastapi import FastAPI


@asynccontextmanager
async def _noop_lifespan(app: FastAPI):
    # Database and Redis are provided by the engine/fake_redis fixtures.
    app.state.shutting_down = False
    yield


@pytest.fixture
def app(engine, fake_redis) -> FastAPI:
    from pilgrim_payments.main import create_app

    return create_app(lifespan_handler=_noop_lifespan)


@pytest.fixture
async def api_client(app: FastAPI):
    """In-process HTTP client sharing the pytest-asyncio event loop."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
