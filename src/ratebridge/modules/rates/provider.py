from __future__ import annotations

import json
import logging
import time
from decimal import Decimal
from typing import Any

import httpx

from ratebridge.core.config import Settings, settings
from ratebridge.core.currencies import is_supported_currency, normalize_currency
from ratebridge.core.errors import (
    AuthError,
    ConfigurationError,
    MalformedResponseError,
    ProviderRequestError,
    RateLimitError,
    ServerError,
    TransportError,
    UnsupportedBaseCurrencyError,
)
from ratebridge.core.logging import get_logger, log_event, monotonic_ms
from ratebridge.modules.rates.store import coerce_rate

logger = get_logger(__name__)

_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "quota")


class RateApiClient:
    """Client for a FreeCurrencyAPI-style `/latest` endpoint."""

    def __init__(
        self,
        *,
        config: Settings | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config or settings
        self._http = http_client

    @property
    def endpoint(self) -> str:
        return self._config.rate_api_base_url.rstrip("/") + "/latest"

    def fetch_latest_rates(self, base_currency: str) -> dict[str, Decimal]:
        base = normalize_currency(base_currency) or str(base_currency)
        if not is_supported_currency(base):
            raise UnsupportedBaseCurrencyError(base)
        api_key = (self._config.rate_api_key or "").strip()
        if not api_key:
            raise ConfigurationError(
                "Rate API key is not configured. Set RATE_API_KEY in the environment or .env file."
            )

        start = time.monotonic()
        resp = self._get(base=base, api_key=api_key)
        _raise_for_status(resp, base=base)
        rates = _parse_rates(resp, base=base)
        log_event(
            logger,
            "rates.fetch.success",
            base_currency=base,
            rate_count=len(rates),
            duration_ms=monotonic_ms(start),
        )
        return rates

    def _get(self, *, base: str, api_key: str) -> httpx.Response:
        params = {"apikey": api_key, "base_currency": base}
        headers = {"accept": "application/json"}
        timeout = float(self._config.rate_api_timeout_seconds or 30.0)
        try:
            if self._http is not None:
                return self._http.get(self.endpoint, params=params, headers=headers, timeout=timeout)
            return httpx.get(
                self.endpoint,
                params=params,
                headers=headers,
                timeout=timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                f"Timed out fetching exchange rates for {base}", base_currency=base
            ) from e
        except httpx.TransportError as e:
            raise TransportError(
                f"Unable to fetch exchange rates for {base}: {e}", base_currency=base
            ) from e


def _raise_for_status(resp: httpx.Response, *, base: str) -> None:
    status_code = resp.status_code
    if 200 <= status_code < 300:
        return

    message = f"Unable to fetch exchange rates for {base}"
    if status_code in {401, 403}:
        raise AuthError(f"{message}: invalid API key", base_currency=base, status_code=status_code)
    if status_code == 429 or _mentions_rate_limit(resp):
        raise RateLimitError(
            f"{message}: rate limit exceeded", base_currency=base, status_code=status_code
        )
    if status_code >= 500:
        raise ServerError(f"{message}: API server error", base_currency=base, status_code=status_code)
    raise ProviderRequestError(
        f"{message}: HTTP {status_code}", base_currency=base, status_code=status_code
    )


def _mentions_rate_limit(resp: httpx.Response) -> bool:
    try:
        text = resp.text
    except Exception:
        return False
    lowered = text[:2000].lower()
    return any(marker in lowered for marker in _RATE_LIMIT_MARKERS)


def _parse_rates(resp: httpx.Response, *, base: str) -> dict[str, Decimal]:
    try:
        body: Any = json.loads(resp.content)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedResponseError(
            f"Failed to parse API response for {base}: {e}", base_currency=base
        ) from e

    if not isinstance(body, dict):
        raise MalformedResponseError("API response is not a JSON object", base_currency=base)
    if "data" not in body:
        raise MalformedResponseError('Invalid API response: missing "data" field', base_currency=base)
    data = body["data"]
    if not isinstance(data, dict):
        raise MalformedResponseError(
            'Invalid API response: "data" field is not an object', base_currency=base
        )
    if not data:
        raise MalformedResponseError('Invalid API response: "data" field is empty', base_currency=base)

    rates: dict[str, Decimal] = {}
    dropped: list[str] = []
    for raw_code, raw_rate in data.items():
        code = normalize_currency(raw_code)
        value = coerce_rate(raw_rate)
        if code is None or value is None:
            dropped.append(str(raw_code))
            continue
        rates[code] = value

    if dropped:
        log_event(
            logger,
            "rates.fetch.dropped_entries",
            level=logging.WARNING,
            base_currency=base,
            dropped=sorted(dropped),
        )
    if not rates:
        raise MalformedResponseError(
            f"Invalid API response for {base}: no valid rates", base_currency=base
        )
    return rates
