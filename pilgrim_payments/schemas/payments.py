"""Pydantic schemas for the payment processor."""

import math
import re
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr, field_validator

IDEMPOTENCY_KEY_MIN_LENGTH = 16
IDEMPOTENCY_KEY_MAX_LENGTH = 64
IDEMPOTENCY_KEY_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
AMOUNT_MAX_DECIMAL_PLACES = 2

REQUIRED_FIELDS = ("booking_id", "amount", "idempotency_key")


class ProcessPaymentRequest(BaseModel):
    """Body of ``POST /process-payment`` after presence and key checks."""

    model_config = ConfigDict(extra="ignore")

    booking_id: StrictStr
    amount: StrictInt | StrictFloat
    currency: StrictStr | None = None
    payment_method: StrictStr | None = None
    idempotency_key: StrictStr
    metadata: dict[str, Any] | None = None

    @field_validator("amount")
    @classmethod
    def amount_must_be_positive(cls, v: int | float) -> int | float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError("amount must be a positive number")
        # Ledger amounts are Numeric(12, 2).
        if Decimal(str(v)).as_tuple().exponent < -AMOUNT_MAX_DECIMAL_PLACES:
            raise ValueError("amount may have at most 2 decimal places")
        return v

    @field_validator("currency")
    @classmethod
    def currency_must_be_iso_code(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().upper()
        if not re.fullmatch(r"[A-Z]{3}", v):
            raise ValueError("currency must be a 3-letter ISO code")
        return v

