from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP

from pydantic import BaseModel, Field, field_validator

# date + expireTime must still fit SQLite's signed 64-bit INTEGER
DAY_LIMIT = 2 ** 61


class FridgeItem(BaseModel):
    """One element of an AddItemsToFridge batch."""

    name: str
    unit: str
    expireTime: int = Field(ge=-DAY_LIMIT, le=DAY_LIMIT)  # offset from `date`, same time unit
    amount: float = Field(allow_inf_nan=False)
    date: int = Field(ge=-DAY_LIMIT, le=DAY_LIMIT)  # acquisition date, e.g. epoch days

    @field_validator("name", "unit")
    @classmethod
    def _utf8_encodable(cls, v: str) -> str:
        try:
            v.encode("utf-8")
        except UnicodeEncodeError:
            raise ValueError("not valid UTF-8 text")
        return v


def round_amount(value: float, precision: int = 6) -> float:
    """Round stored quantities so REAL round-off does not leak into replies."""
    if value == 0.0:
        return 0.0
    # beyond float's significant digits there is no fraction left to round
    if not math.isfinite(value) or abs(value) >= 1e15:
        return value
    return float(Decimal(str(value)).quantize(Decimal('0.' + '0' * precision), rounding=ROUND_HALF_UP))


def expire_date(date: int, expire_time: int) -> int:
    """Derived expiry: acquisition date plus the class offset. Never stored."""
    return int(date) + int(expire_time)
