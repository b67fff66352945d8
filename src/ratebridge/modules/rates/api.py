from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from kombu.exceptions import OperationalError
from sqlalchemy.orm import Session

from ratebridge.core.config import settings
from ratebridge.core.currencies import CURRENCIES, is_supported_currency, normalize_currency
from ratebridge.core.db import db_session
from ratebridge.modules.rates.schemas import (
    CurrencyOut,
    DispatchOut,
    ExchangeRateOut,
    SyncRequest,
)
from ratebridge.modules.rates.store import list_latest_rates

router = APIRouter(tags=["rates"])


@router.get("/currencies", response_model=list[CurrencyOut])
def list_currencies() -> list[CurrencyOut]:
    return [CurrencyOut(code=c.code, name=c.name, symbol=c.symbol) for c in CURRENCIES.values()]


@router.get("/exchange-rates/{base_currency}", response_model=list[ExchangeRateOut])
def latest_rates(base_currency: str, session: Session = Depends(db_session)) -> list[ExchangeRateOut]:
    code = normalize_currency(base_currency)
    if not code or not is_supported_currency(code):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Currency '{base_currency}' is not supported.",
        )
    rates = list_latest_rates(session, base_code=code)
    return [ExchangeRateOut.model_validate(r, from_attributes=True) for r in rates]


@router.post(
    "/exchange-rates/sync-daily",
    response_model=DispatchOut,
    status_code=status.HTTP_202_ACCEPTED,
)
def sync_daily() -> DispatchOut:
    from ratebridge.worker.tasks import sync_daily_rates_task

    try:
        result = sync_daily_rates_task.delay()
    except OperationalError as e:
        raise _queue_unavailable() from e
    return DispatchOut(status="dispatched", task_id=getattr(result, "id", None))


@router.post("/exchange-rates/sync", response_model=DispatchOut, status_code=status.HTTP_202_ACCEPTED)
def sync_rates(payload: SyncRequest) -> DispatchOut:
    from ratebridge.worker.tasks import sync_rates_task

    base = None
    if payload.base_currency:
        base = normalize_currency(payload.base_currency)
        if not base or not is_supported_currency(base):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Base currency '{payload.base_currency}' is not supported.",
            )
    elif payload.use_default_base:
        base = settings.default_base_currency
    try:
        result = sync_rates_task.delay(base, payload.force)
    except OperationalError as e:
        raise _queue_unavailable() from e
    return DispatchOut(
        status="dispatched",
        task_id=getattr(result, "id", None),
        base_currency=base,
        force=payload.force,
    )


def _queue_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Task queue is unavailable. Try again later.",
    )
