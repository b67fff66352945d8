"""
Exchange-rate synchronization.

Each base currency is one sync unit. A unit moves through

    PENDING -> FETCHING -> SUCCEEDED | SKIPPED | FAILED_PERMANENTLY
                        -> RATE_LIMITED_RETRY | TRANSIENT_RETRY -> FETCHING ...

`SyncOrchestrator.run_attempt` performs exactly one FETCHING step and reports the
next state plus the delay before the next attempt. `sync_currency` drives that
step in-process with an injectable sleep; the Celery task drives it with
`Task.retry(countdown=...)` instead.
"""

from __future__ import annotations

import enum
import logging
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from ratebridge.core.config import Settings, settings
from ratebridge.core.currencies import (
    is_supported_currency,
    normalize_currency,
    ordered_currency_codes,
)
from ratebridge.core.db import SessionFactory, SessionLocal
from ratebridge.core.errors import (
    ConfigurationError,
    InvalidInputError,
    ProviderError,
    RateLimitError,
    TransientProviderError,
    UnsupportedBaseCurrencyError,
)
from ratebridge.core.logging import get_logger, log_context, log_event, log_exception
from ratebridge.core.models import utc_today, utcnow
from ratebridge.modules.rates.provider import RateApiClient
from ratebridge.modules.rates.store import (
    base_currencies_with_rates_for_date,
    has_rates_for_date,
    storable_rate,
    upsert_daily_rates,
)

logger = get_logger(__name__)


class UnitState(str, enum.Enum):
    PENDING = "PENDING"
    FETCHING = "FETCHING"
    SUCCEEDED = "SUCCEEDED"
    RATE_LIMITED_RETRY = "RATE_LIMITED_RETRY"
    TRANSIENT_RETRY = "TRANSIENT_RETRY"
    FAILED_PERMANENTLY = "FAILED_PERMANENTLY"
    SKIPPED = "SKIPPED"


TERMINAL_STATES = frozenset(
    {UnitState.SUCCEEDED, UnitState.FAILED_PERMANENTLY, UnitState.SKIPPED}
)


class RateFetcher(Protocol):
    def fetch_latest_rates(self, base_currency: str) -> Mapping[str, object]: ...


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 5.0
    rate_limit_cooldown_seconds: float = 300.0

    @classmethod
    def from_settings(cls, config: Settings) -> RetryPolicy:
        return cls(
            max_attempts=max(1, int(config.sync_max_retries)),
            base_delay_seconds=float(config.sync_retry_delay_seconds),
            rate_limit_cooldown_seconds=float(config.sync_rate_limit_cooldown_seconds),
        )

    def backoff_seconds(self, attempt: int) -> float:
        # attempt=1 => base, attempt=2 => 2*base, attempt=3 => 4*base
        return self.base_delay_seconds * (2 ** (max(attempt, 1) - 1))


@dataclass
class WriteCounts:
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0


@dataclass(frozen=True)
class AttemptResult:
    currency: str
    attempt: int
    state: UnitState
    retry_in: float | None = None
    counts: WriteCounts = field(default_factory=WriteCounts)
    error: str | None = None
    error_type: str | None = None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass
class UnitOutcome:
    currency: str
    state: UnitState
    attempts: int
    counts: WriteCounts = field(default_factory=WriteCounts)
    history: list[UnitState] = field(default_factory=list)
    error: str | None = None
    error_type: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "currency": self.currency,
            "state": self.state.value,
            "attempts": self.attempts,
            "successful": self.counts.successful,
            "failed": self.counts.failed,
            "skipped": self.counts.skipped,
            "total": self.counts.total,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class SyncStats:
    base_currency: str | None
    started_at: datetime
    completed_at: datetime | None = None
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    units: list[UnitOutcome] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def currencies_in(self, state: UnitState) -> list[str]:
        return [u.currency for u in self.units if u.state == state]

    def add(self, outcome: UnitOutcome) -> None:
        self.units.append(outcome)
        self.successful += outcome.counts.successful
        self.failed += outcome.counts.failed
        self.skipped += outcome.counts.skipped
        self.total += outcome.counts.total

    def as_dict(self) -> dict[str, Any]:
        return {
            "base_currency": self.base_currency,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
            "units": [u.as_dict() for u in self.units],
        }


@dataclass(frozen=True)
class DispatchSummary:
    on_date: date
    dispatched: list[str]
    skipped: list[str]
    estimated_completion_seconds: float


def filter_rates(base_code: str, rates: Mapping[str, object]) -> tuple[dict[str, Decimal], WriteCounts]:
    counts = WriteCounts(total=len(rates))
    rows: dict[str, Decimal] = {}
    for raw_target, raw_rate in rates.items():
        target = normalize_currency(raw_target)
        if not target or not is_supported_currency(target) or target == base_code:
            counts.skipped += 1
            continue
        value = storable_rate(raw_rate)
        if value is None:
            log_event(
                logger,
                "sync.rate.invalid",
                level=logging.WARNING,
                base_currency=base_code,
                target_currency=target,
                rate=str(raw_rate),
            )
            counts.failed += 1
            continue
        rows[target] = value
    return rows, counts


class SyncOrchestrator:
    def __init__(
        self,
        *,
        client: RateFetcher | None = None,
        session_factory: SessionFactory = SessionLocal,
        policy: RetryPolicy | None = None,
        delay_between_calls: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = utc_today,
        config: Settings | None = None,
    ) -> None:
        config = config or settings
        self._config = config
        self._client: RateFetcher = client or RateApiClient(config=config)
        self._session_factory = session_factory
        self._policy = policy or RetryPolicy.from_settings(config)
        if delay_between_calls is None:
            delay_between_calls = float(config.sync_delay_between_calls)
        self._delay_between_calls = delay_between_calls
        self._sleep = sleep
        self._today = today

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def run_attempt(
        self, currency: str, *, on_date: date, attempt: int, force: bool = False
    ) -> AttemptResult:
        code = normalize_currency(currency) or str(currency)
        if not is_supported_currency(code):
            return self._fail(code, attempt, UnsupportedBaseCurrencyError(code))

        log_event(
            logger,
            "sync.unit.fetching",
            level=logging.DEBUG,
            currency=code,
            attempt=attempt,
            date=on_date.isoformat(),
        )
        try:
            with self._session_factory() as session, session.begin():
                if not force and has_rates_for_date(session, base_code=code, on_date=on_date):
                    log_event(logger, "sync.unit.skipped", currency=code, date=on_date.isoformat())
                    return AttemptResult(currency=code, attempt=attempt, state=UnitState.SKIPPED)

                # Fetch and write share one transaction; a failed write rolls back the unit.
                rates = self._client.fetch_latest_rates(code)
                rows, counts = filter_rates(code, rates)
                counts.successful = upsert_daily_rates(
                    session, base_code=code, rates=rows, on_date=on_date
                )
        except RateLimitError as e:
            return self._retry_or_fail(
                code,
                attempt,
                UnitState.RATE_LIMITED_RETRY,
                self._policy.rate_limit_cooldown_seconds,
                e,
            )
        except TransientProviderError as e:
            return self._retry_or_fail(
                code, attempt, UnitState.TRANSIENT_RETRY, self._policy.backoff_seconds(attempt), e
            )
        except (ConfigurationError, InvalidInputError, ProviderError) as e:
            return self._fail(code, attempt, e)
        except SQLAlchemyError as e:
            log_exception(logger, "sync.unit.write_error", currency=code, attempt=attempt)
            return self._retry_or_fail(
                code, attempt, UnitState.TRANSIENT_RETRY, self._policy.backoff_seconds(attempt), e
            )
        except Exception as e:
            log_exception(logger, "sync.unit.unexpected_error", currency=code, attempt=attempt)
            return self._fail(code, attempt, e)

        log_event(
            logger,
            "sync.unit.succeeded",
            currency=code,
            attempt=attempt,
            date=on_date.isoformat(),
            successful=counts.successful,
            failed=counts.failed,
            skipped=counts.skipped,
            total=counts.total,
        )
        return AttemptResult(currency=code, attempt=attempt, state=UnitState.SUCCEEDED, counts=counts)

    def sync_currency(
        self, currency: str, *, on_date: date | None = None, force: bool = False
    ) -> UnitOutcome:
        on_date = on_date or self._today()
        code = normalize_currency(currency) or str(currency)
        history: list[UnitState] = [UnitState.PENDING]
        attempt = 1
        while True:
            history.append(UnitState.FETCHING)
            result = self.run_attempt(code, on_date=on_date, attempt=attempt, force=force)
            history.append(result.state)
            if result.terminal:
                return UnitOutcome(
                    currency=result.currency,
                    state=result.state,
                    attempts=attempt,
                    counts=result.counts,
                    history=history,
                    error=result.error,
                    error_type=result.error_type,
                )
            self._sleep(result.retry_in or 0.0)
            attempt += 1

    def sync_all(
        self,
        base_currency: str | None = None,
        *,
        force: bool = False,
        use_default_base: bool = False,
    ) -> SyncStats:
        """
        Sync one base or, when `base_currency` is None, the whole catalog.

        `use_default_base` substitutes the configured default base for a missing
        `base_currency`; `force` refetches bases that already have rates for today.
        """
        if base_currency is None and use_default_base:
            base_currency = self._config.default_base_currency
        if base_currency is not None:
            code = normalize_currency(base_currency) or str(base_currency)
            if not is_supported_currency(code):
                raise UnsupportedBaseCurrencyError(code)
            codes = [code]
        else:
            code = None
            codes = ordered_currency_codes()

        on_date = self._today()
        stats = SyncStats(base_currency=code, started_at=utcnow())
        with log_context(sync_run_id=uuid.uuid4().hex):
            log_event(
                logger,
                "sync.run.start",
                base_currency=code,
                force=force or None,
                currencies=len(codes),
                date=on_date.isoformat(),
            )
            called_api = False
            for currency in codes:
                if called_api and self._delay_between_calls > 0:
                    self._sleep(self._delay_between_calls)
                outcome = self.sync_currency(currency, on_date=on_date, force=force)
                stats.add(outcome)
                called_api = outcome.state != UnitState.SKIPPED
            stats.completed_at = utcnow()
            failed_units = stats.currencies_in(UnitState.FAILED_PERMANENTLY)
            log_event(
                logger,
                "sync.run.finish",
                level=logging.WARNING if failed_units else logging.INFO,
                base_currency=code,
                date=on_date.isoformat(),
                successful=stats.successful,
                failed=stats.failed,
                skipped=stats.skipped,
                total=stats.total,
                failed_currencies=failed_units or None,
                duration_seconds=stats.duration_seconds,
            )
        return stats

    def dispatch_daily_sync(
        self,
        enqueue: Callable[[str, date, float], Any],
        *,
        on_date: date | None = None,
        job_delay_seconds: float | None = None,
        currencies: Iterable[str] | None = None,
    ) -> DispatchSummary:
        on_date = on_date or self._today()
        if job_delay_seconds is None:
            job_delay_seconds = float(self._config.sync_job_delay_seconds)
        codes = list(currencies) if currencies is not None else ordered_currency_codes()
        if not codes:
            raise ConfigurationError("No currencies configured for synchronization.")

        with self._session_factory() as session:
            existing = base_currencies_with_rates_for_date(session, on_date=on_date)

        dispatched: list[str] = []
        skipped: list[str] = []
        countdown = 0.0
        for code in codes:
            if code in existing:
                skipped.append(code)
                continue
            enqueue(code, on_date, countdown)
            dispatched.append(code)
            countdown += job_delay_seconds

        log_event(
            logger,
            "sync.dispatch.finish",
            date=on_date.isoformat(),
            total_currencies=len(codes),
            jobs_dispatched=len(dispatched),
            skipped=len(skipped),
            estimated_completion_seconds=countdown,
        )
        return DispatchSummary(
            on_date=on_date,
            dispatched=dispatched,
            skipped=skipped,
            estimated_completion_seconds=countdown,
        )

    def _retry_or_fail(
        self,
        code: str,
        attempt: int,
        retry_state: UnitState,
        delay: float,
        error: Exception,
    ) -> AttemptResult:
        if attempt >= self._policy.max_attempts:
            return self._fail(code, attempt, error, exhausted=True)
        log_event(
            logger,
            "sync.unit.retry",
            level=logging.WARNING,
            currency=code,
            attempt=attempt,
            max_attempts=self._policy.max_attempts,
            state=retry_state.value,
            retry_in_seconds=delay,
            error=str(error),
            error_type=type(error).__name__,
        )
        return AttemptResult(
            currency=code,
            attempt=attempt,
            state=retry_state,
            retry_in=delay,
            error=str(error),
            error_type=type(error).__name__,
        )

    def _fail(
        self, code: str, attempt: int, error: Exception, *, exhausted: bool = False
    ) -> AttemptResult:
        log_event(
            logger,
            "sync.unit.failed",
            level=logging.ERROR,
            currency=code,
            attempt=attempt,
            retries_exhausted=exhausted,
            error=str(error),
            error_type=type(error).__name__,
        )
        return AttemptResult(
            currency=code,
            attempt=attempt,
            state=UnitState.FAILED_PERMANENTLY,
            error=str(error),
            error_type=type(error).__name__,
        )
