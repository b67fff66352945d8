from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel


class CurrencyOut(BaseModel):
    code: str
    name: str
    symbol: str


class ExchangeRateOut(BaseModel):
    id: int
    base_code: str
    target_code: str
    rate: Decimal
    date: dt.date
    created_at: dt.datetime
    updated_at: dt.datetime


class SyncRequest(BaseModel):
    base_currency: str | None = None
    use_default_base: bool = False
    force: bool = False


class DispatchOut(BaseModel):
    status: str
    task_id: str | None = None
    base_currency: str | None = None
    force: bool = False
