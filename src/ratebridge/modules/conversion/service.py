from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from ratebridge.core.config import Settings, settings
from ratebridge.core.currencies import is_supported_currency
from ratebridge.core.errors import (
    CurrencyNotFoundError,
    InvalidAmountError,
    RateNotFoundError,
    describe_amount,
)
from ratebridge.core.logging import get_logger, log_event
from ratebridge.core.models import utc_today
from ratebridge.modules.rates.models import ExchangeRate
from ratebridge.modules.rates.store import find_latest_rate, find_rate

logger = get_logger(__name__)

_ROUNDING_MODES = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "down": ROUND_DOWN,
}

_ONE = Decimal("1")


@dataclass(frozen=True)
class ConversionResult:
    amount: Decimal
    from_currency: str
    to_currency: str
    converted_amount: Decimal
    rate: Decimal
    rate_date: date | None
    is_direct_rate: bool
    intermediate_currency: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "amount": self.amount,
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "converted_amount": self.converted_amount,
            "rate": self.rate,
            "rate_date": self.rate_date.isoformat() if self.rate_date else None,
            "is_direct_rate": self.is_direct_rate,
            "intermediate_currency": self.intermediate_currency,
        }


def convert_amount(
    session: Session,
    *,
    amount: object,
    from_currency: str,
    to_currency: str,
    today: date | None = None,
    config: Settings | None = None,
) -> ConversionResult:
    """
    Convert `amount` from one supported currency to another.

    Validation runs before any store access: amount first, then the source and
    target codes. Lookup order is the direct pair (today, then the latest rate
    dated on or before today), then a bridge through the configured intermediate
    currency. Raises InvalidAmountError, CurrencyNotFoundError or RateNotFoundError.
    """
    config = config or settings
    value = _validate_amount(amount, config)
    from_code = _validate_currency(from_currency, field="from_currency")
    to_code = _validate_currency(to_currency, field="to_currency")

    if from_code == to_code:
        return ConversionResult(
            amount=value,
            from_currency=from_code,
            to_currency=to_code,
            converted_amount=_round_amount(value, config),
            rate=_round_rate(_ONE, config),
            rate_date=None,
            is_direct_rate=True,
        )

    on_date = today or utc_today()
    direct = find_rate_with_fallback(session, base_code=from_code, target_code=to_code, on_date=on_date)
    if direct is not None:
        return ConversionResult(
            amount=value,
            from_currency=from_code,
            to_currency=to_code,
            converted_amount=_round_amount(value * direct.rate, config),
            rate=_round_rate(direct.rate, config),
            rate_date=direct.date,
            is_direct_rate=True,
        )

    intermediate = config.conversion_fallback_currency
    if config.conversion_enable_fallback and intermediate not in {from_code, to_code}:
        return _convert_via_intermediate(
            session,
            value=value,
            from_code=from_code,
            to_code=to_code,
            intermediate=intermediate,
            on_date=on_date,
            config=config,
        )

    raise RateNotFoundError(from_code, to_code)


def find_rate_with_fallback(
    session: Session, *, base_code: str, target_code: str, on_date: date
) -> ExchangeRate | None:
    rate = find_rate(session, base_code=base_code, target_code=target_code, on_date=on_date)
    if rate is not None:
        return rate
    return find_latest_rate(
        session, base_code=base_code, target_code=target_code, on_or_before=on_date
    )


def _convert_via_intermediate(
    session: Session,
    *,
    value: Decimal,
    from_code: str,
    to_code: str,
    intermediate: str,
    on_date: date,
    config: Settings,
) -> ConversionResult:
    first_leg = find_rate_with_fallback(
        session, base_code=from_code, target_code=intermediate, on_date=on_date
    )
    second_leg = find_rate_with_fallback(
        session, base_code=intermediate, target_code=to_code, on_date=on_date
    )

    if first_leg is None or second_leg is None:
        missing: list[str] = []
        if first_leg is None:
            missing.append(f"{from_code}->{intermediate}")
        if second_leg is None:
            missing.append(f"{intermediate}->{to_code}")
        log_event(
            logger,
            "conversion.bridge.failed",
            level=logging.WARNING,
            from_currency=from_code,
            to_currency=to_code,
            intermediate_currency=intermediate,
            missing_rates=missing,
        )
        raise RateNotFoundError(from_code, to_code, intermediate=intermediate)

    effective_rate = first_leg.rate * second_leg.rate
    rate_date = max(first_leg.date, second_leg.date)
    log_event(
        logger,
        "conversion.bridge.used",
        from_currency=from_code,
        to_currency=to_code,
        intermediate_currency=intermediate,
        effective_rate=str(effective_rate),
        rate_date=rate_date.isoformat(),
    )
    return ConversionResult(
        amount=value,
        from_currency=from_code,
        to_currency=to_code,
        converted_amount=_round_amount(value * first_leg.rate * second_leg.rate, config),
        rate=_round_rate(effective_rate, config),
        rate_date=rate_date,
        is_direct_rate=False,
        intermediate_currency=intermediate,
    )


def _validate_amount(amount: object, config: Settings) -> Decimal:
    if isinstance(amount, bool) or amount is None:
        raise InvalidAmountError("Amount must be a valid number.", amount=amount)
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError("Amount must be a valid number.", amount=amount) from e

    if not value.is_finite():
        raise InvalidAmountError(
            f"Amount must be a finite number. Provided: {describe_amount(amount)}.", amount=amount
        )
    if value == 0:
        raise InvalidAmountError("Amount must be greater than zero.", amount=amount)
    if value < 0:
        raise InvalidAmountError(
            f"Amount must be positive. Provided: {describe_amount(value)}.", amount=amount
        )
    if value < config.conversion_min_amount:
        raise InvalidAmountError(
            f"Amount must be at least {describe_amount(config.conversion_min_amount)}. "
            f"Provided: {describe_amount(value)}.",
            amount=amount,
        )
    if value > config.conversion_max_amount:
        raise InvalidAmountError(
            "Amount exceeds maximum allowed value of "
            f"{describe_amount(config.conversion_max_amount)}. Provided: {describe_amount(value)}.",
            amount=amount,
        )
    return value


def _validate_currency(raw: object, *, field: str) -> str:
    code = raw.strip().upper() if isinstance(raw, str) else ""
    if not code or not is_supported_currency(code):
        raise CurrencyNotFoundError(code or (raw if isinstance(raw, str) else ""), field=field)
    return code


def _round_amount(value: Decimal, config: Settings) -> Decimal:
    quant = _ONE.scaleb(-int(config.conversion_amount_decimals))
    return value.quantize(quant, rounding=_ROUNDING_MODES[config.conversion_rounding])


def _round_rate(value: Decimal, config: Settings) -> Decimal:
    quant = _ONE.scaleb(-int(config.conversion_rate_decimals))
    return value.quantize(quant, rounding=ROUND_HALF_UP)
