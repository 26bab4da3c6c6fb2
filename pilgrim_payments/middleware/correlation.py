"""Request ID middleware for request tracing.

Every HTTP call gets its own ``req_<base36 ms>_<random>`` id, carried in the
``X-Request-ID`` response header and in ``meta.request_id`` of the envelope.
"""

import secrets
import string
import time

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

_BASE36 = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_request_id() -> str:
    timestamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"req_{timestamp}_{suffix}"


def setup_correlation_middleware(app: FastAPI) -> None:
    """Add request ID middleware to the FastAPI app.

    Client-supplied ``X-Request-ID`` headers are ignored so the id is always
    fresh per call.
    """
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name="X-Request-ID",
        generator=generate_request_id,
        validator=lambda _: False,
        transformer=lambda a: a,
    )


def get_request_id() -> str:
    """Return the current request's id, or a fresh one outside a request context."""
    return correlation_id.get(None) or generate_request_id()


__all__ = ["generate_request_id", "get_request_id", "setup_correlation_middleware", "to_base36"]
