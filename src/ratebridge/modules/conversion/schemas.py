from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel


class ConvertIn(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str


class ConversionOut(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str
    converted_amount: Decimal
    rate: Decimal
    rate_date: date | None
    is_direct_rate: bool
    intermediate_currency: str | None
