from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from ratebridge.core.currencies import normalize_currency
from ratebridge.core.db import dialect_name
from ratebridge.core.models import utcnow
from ratebridge.modules.rates.models import RATE_PRECISION, RATE_SCALE, ExchangeRate

_RATE_QUANT = Decimal(1).scaleb(-RATE_SCALE)
_RATE_LIMIT = Decimal(10) ** (RATE_PRECISION - RATE_SCALE)
_CONFLICT_KEY = ["base_code", "target_code", "date"]


def coerce_rate(raw: object) -> Decimal | None:
    """Parse a provider/stored rate value; None when it is not a finite number."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, float) and not math.isfinite(raw):
        return None
    if isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    elif isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, str):
        try:
            value = Decimal(raw.strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not value.is_finite():
        return None
    return value


def storable_rate(raw: object) -> Decimal | None:
    """Quantize to the column scale; None unless the result is positive and fits the column."""
    value = coerce_rate(raw)
    if value is None:
        return None
    try:
        value = value.quantize(_RATE_QUANT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    if value <= 0 or value >= _RATE_LIMIT:
        return None
    return value


def find_rate(session: Session, *, base_code: str, target_code: str, on_date: date) -> ExchangeRate | None:
    return session.scalar(
        select(ExchangeRate).where(
            ExchangeRate.base_code == base_code,
            ExchangeRate.target_code == target_code,
            ExchangeRate.date == on_date,
        )
    )


def find_latest_rate(
    session: Session,
    *,
    base_code: str,
    target_code: str,
    on_or_before: date | None = None,
) -> ExchangeRate | None:
    stmt = select(ExchangeRate).where(
        ExchangeRate.base_code == base_code,
        ExchangeRate.target_code == target_code,
    )
    if on_or_before is not None:
        stmt = stmt.where(ExchangeRate.date <= on_or_before)
    stmt = stmt.order_by(ExchangeRate.date.desc(), ExchangeRate.id.desc()).limit(1)
    return session.scalar(stmt)


def has_rates_for_date(session: Session, *, base_code: str, on_date: date) -> bool:
    found = session.scalar(
        select(ExchangeRate.id)
        .where(ExchangeRate.base_code == base_code, ExchangeRate.date == on_date)
        .limit(1)
    )
    return found is not None


def base_currencies_with_rates_for_date(session: Session, *, on_date: date) -> set[str]:
    return set(
        session.scalars(select(ExchangeRate.base_code).where(ExchangeRate.date == on_date).distinct())
    )


def list_latest_rates(session: Session, *, base_code: str) -> list[ExchangeRate]:
    latest_date = session.scalar(
        select(func.max(ExchangeRate.date)).where(ExchangeRate.base_code == base_code)
    )
    if latest_date is None:
        return []
    return list(
        session.scalars(
            select(ExchangeRate)
            .where(ExchangeRate.base_code == base_code, ExchangeRate.date == latest_date)
            .order_by(ExchangeRate.target_code)
        )
    )


def upsert_daily_rates(
    session: Session,
    *,
    base_code: str,
    rates: Mapping[str, object],
    on_date: date,
) -> int:
    """
    Insert or overwrite one day's rates for `base_code`.

    Non-numeric, self-referencing entries and rates that are not positive after
    rounding to the column scale (or overflow it) are skipped. All rows
    are written inside the caller's transaction; the caller commits or rolls back.
    Returns the number of rows written.
    """
    now = utcnow()
    by_target: dict[str, dict] = {}
    for raw_target, raw_rate in rates.items():
        target = normalize_currency(raw_target)
        if not target or target == base_code:
            continue
        value = storable_rate(raw_rate)
        if value is None:
            continue
        by_target[target] = {
            "base_code": base_code,
            "target_code": target,
            "rate": value,
            "date": on_date,
            "created_at": now,
            "updated_at": now,
        }

    rows = list(by_target.values())
    if not rows:
        return 0

    dialect = dialect_name(session)
    if dialect in {"sqlite", "postgresql"}:
        insert_fn = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = insert_fn(ExchangeRate).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=_CONFLICT_KEY,
            set_={"rate": stmt.excluded.rate, "updated_at": stmt.excluded.updated_at},
        )
        session.execute(stmt)
    else:
        for row in rows:
            _upsert_row(session, row)
    session.flush()
    return len(rows)


def _upsert_row(session: Session, row: dict) -> None:
    existing = find_rate(
        session, base_code=row["base_code"], target_code=row["target_code"], on_date=row["date"]
    )
    if existing is None:
        session.add(ExchangeRate(**row))
        return
    existing.rate = row["rate"]
    existing.updated_at = row["updated_at"]
    session.add(existing)
