from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ratebridge.core.config import Settings
from ratebridge.core.currencies import ordered_currency_codes
from ratebridge.core.db import SessionLocal
from ratebridge.core.errors import CurrencyNotFoundError, InvalidAmountError, RateNotFoundError
from ratebridge.modules.conversion.service import convert_amount

TODAY = date(2024, 1, 5)


def _convert(amount, from_currency, to_currency, **kwargs):
    with SessionLocal() as session:
        return convert_amount(
            session,
            amount=amount,
            from_currency=from_currency,
            to_currency=to_currency,
            today=TODAY,
            **kwargs,
        )


def test_identity_conversion_for_every_supported_currency():
    for code in ordered_currency_codes():
        result = convert_amount(None, amount="12.345", from_currency=code, to_currency=code, today=TODAY)
        assert result.converted_amount == Decimal("12.35")
        assert result.rate == Decimal("1")
        assert result.rate_date is None
        assert result.is_direct_rate is True
        assert result.intermediate_currency is None


def test_uses_most_recent_rate_on_or_before_today(add_rate):
    add_rate("USD", "EUR", "0.90", date(2024, 1, 1))
    add_rate("USD", "EUR", "0.95", date(2024, 1, 3))

    result = _convert("100", "USD", "EUR")

    assert result.converted_amount == Decimal("95.00")
    assert result.rate == Decimal("0.95")
    assert result.rate_date == date(2024, 1, 3)
    assert result.is_direct_rate is True


def test_prefers_rate_dated_today(add_rate):
    add_rate("EUR", "USD", "0.95", date(2024, 1, 3))
    add_rate("EUR", "USD", "1.05", TODAY)

    result = _convert("10", "EUR", "USD")

    assert result.rate_date == TODAY
    assert result.converted_amount == Decimal("10.50")


def test_future_dated_rates_are_ignored(add_rate):
    add_rate("EUR", "CHF", "0.97", date(2024, 1, 9))

    with pytest.raises(RateNotFoundError):
        _convert("10", "EUR", "CHF", config=Settings(conversion_enable_fallback=False))


def test_inverse_rate_is_never_assumed(add_rate):
    add_rate("USD", "EUR", "0.9", TODAY)

    with pytest.raises(RateNotFoundError) as exc_info:
        _convert("10", "EUR", "USD")
    assert "EUR" in str(exc_info.value)
    assert "USD" in str(exc_info.value)


def test_bridges_through_intermediate_currency(add_rate):
    add_rate("GBP", "USD", "1.25", date(2024, 1, 2))
    add_rate("USD", "JPY", "150", date(2024, 1, 4))

    result = _convert("10", "GBP", "JPY")

    assert result.is_direct_rate is False
    assert result.intermediate_currency == "USD"
    assert result.rate == Decimal("187.5")
    assert result.converted_amount == Decimal("1875.00")
    assert result.rate_date == date(2024, 1, 4)
    assert result.as_dict()["rate_date"] == "2024-01-04"
    assert result.as_dict()["intermediate_currency"] == "USD"


def test_direct_rate_wins_over_bridge_even_if_older(add_rate):
    add_rate("GBP", "JPY", "180", date(2023, 12, 1))
    add_rate("GBP", "USD", "1.25", TODAY)
    add_rate("USD", "JPY", "150", TODAY)

    result = _convert("1", "GBP", "JPY")

    assert result.is_direct_rate is True
    assert result.converted_amount == Decimal("180.00")


def test_bridge_with_missing_leg_reports_both_currencies(add_rate):
    add_rate("GBP", "USD", "1.25", TODAY)

    with pytest.raises(RateNotFoundError) as exc_info:
        _convert("10", "GBP", "JPY")
    message = str(exc_info.value)
    assert "GBP" in message
    assert "JPY" in message
    assert exc_info.value.intermediate == "USD"


def test_no_bridge_when_disabled(add_rate):
    add_rate("GBP", "USD", "1.25", TODAY)
    add_rate("USD", "JPY", "150", TODAY)

    with pytest.raises(RateNotFoundError) as exc_info:
        _convert("10", "GBP", "JPY", config=Settings(conversion_enable_fallback=False))
    assert exc_info.value.intermediate is None


def test_no_bridge_when_endpoint_is_the_intermediate():
    with pytest.raises(RateNotFoundError) as exc_info:
        _convert("10", "USD", "JPY")
    assert exc_info.value.intermediate is None


@pytest.mark.parametrize(
    "amount",
    [None, True, "", "abc", "NaN", "Infinity", "0", 0, "-5", Decimal("-0.5"), "0.001", "1000000000"],
)
def test_invalid_amounts_are_rejected_before_store_access(amount):
    with pytest.raises(InvalidAmountError):
        convert_amount(None, amount=amount, from_currency="EUR", to_currency="USD", today=TODAY)


def test_amount_is_validated_before_currencies():
    with pytest.raises(InvalidAmountError):
        convert_amount(None, amount="-1", from_currency="XXX", to_currency="YYY", today=TODAY)


@pytest.mark.parametrize(
    ("from_currency", "to_currency", "field"),
    [("XXX", "USD", "from_currency"), ("EUR", "ABC", "to_currency"), ("", "USD", "from_currency")],
)
def test_unsupported_currency_rejected_before_store_access(from_currency, to_currency, field):
    with pytest.raises(CurrencyNotFoundError) as exc_info:
        convert_amount(None, amount="10", from_currency=from_currency, to_currency=to_currency, today=TODAY)
    assert exc_info.value.field == field


def test_currency_codes_are_normalized(add_rate):
    add_rate("EUR", "USD", "0.95", TODAY)

    result = _convert("100", " eur ", "usd")

    assert result.from_currency == "EUR"
    assert result.to_currency == "USD"
    assert result.converted_amount == Decimal("95.00")


def test_amount_rounds_half_up(add_rate):
    add_rate("EUR", "USD", "0.5", TODAY)

    assert _convert("0.05", "EUR", "USD").converted_amount == Decimal("0.03")


def test_rounding_mode_is_configurable(add_rate):
    add_rate("EUR", "USD", "0.5", TODAY)

    result = _convert("0.05", "EUR", "USD", config=Settings(conversion_rounding="half_even"))

    assert result.converted_amount == Decimal("0.02")


def test_rate_reported_with_eight_decimals(add_rate):
    add_rate("EUR", "JPY", "161.123456789", TODAY)

    result = _convert("1", "EUR", "JPY")

    assert result.rate == Decimal("161.12345679")
    assert result.rate.as_tuple().exponent == -8
