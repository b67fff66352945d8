from __future__ import annotations

import pytest

from ratebridge.core.currencies import (
    CURRENCIES,
    all_currency_codes,
    currency_info,
    is_supported_currency,
    normalize_currency,
    ordered_currency_codes,
)


def test_catalog_has_fixed_entries_with_name_and_symbol():
    codes = all_currency_codes()
    assert len(codes) == 33
    assert len(ordered_currency_codes()) == 33
    assert set(ordered_currency_codes()) == codes
    for code in codes:
        info = currency_info(code)
        assert info is not None
        assert info.code == code
        assert info.name
        assert info.symbol


def test_lookup_is_case_sensitive_and_never_raises():
    assert is_supported_currency("USD")
    assert not is_supported_currency("usd")
    assert not is_supported_currency("XXX")
    assert not is_supported_currency(None)
    assert currency_info("EUR").symbol == "€"
    assert currency_info("eur") is None
    assert currency_info(123) is None


def test_normalize_currency_trims_and_uppercases():
    assert normalize_currency(" usd ") == "USD"
    assert normalize_currency("Gbp") == "GBP"
    assert normalize_currency("US") is None
    assert normalize_currency("US1") is None
    assert normalize_currency(None) is None


def test_catalog_is_read_only():
    with pytest.raises(TypeError):
        CURRENCIES["XXX"] = CURRENCIES["USD"]  # type: ignore[index]
