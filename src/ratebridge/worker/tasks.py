from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import ratebridge.models  # noqa: F401
# isort: on

import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from typing import Any

from celery.exceptions import Retry

from ratebridge.core.config import settings
from ratebridge.core.currencies import ordered_currency_codes
from ratebridge.core.locks import get_run_lock, single_run
from ratebridge.core.logging import get_logger, log_context, log_event, log_exception, monotonic_ms
from ratebridge.core.models import utc_today
from ratebridge.modules.sync.service import SyncOrchestrator
from ratebridge.worker.celery_app import celery_app

logger = get_logger(__name__)

SWEEP_LOCK_NAME = "sync-daily-exchange-rates"


@contextmanager
def _task_scope(task, task_name: str, **fields: Any) -> Iterator[None]:
    task_id = getattr(task.request, "id", None)
    start = time.monotonic()
    with log_context(celery_task_id=task_id):
        log_event(logger, "celery.task.start", task_name=task_name, **fields)
        try:
            yield
        except Retry:
            log_event(
                logger,
                "celery.task.retry",
                task_name=task_name,
                duration_ms=monotonic_ms(start),
                **fields,
            )
            raise
        except Exception:
            log_exception(
                logger,
                "celery.task.error",
                task_name=task_name,
                duration_ms=monotonic_ms(start),
                **fields,
            )
            raise
        log_event(
            logger,
            "celery.task.finish",
            task_name=task_name,
            duration_ms=monotonic_ms(start),
            **fields,
        )


def dispatch_window_seconds() -> int:
    stagger = settings.sync_job_delay_seconds * len(ordered_currency_codes())
    return int(stagger) + int(settings.sync_lock_ttl_seconds)


def enqueue_currency_sync(currency_code: str, on_date: date, countdown: float) -> None:
    sync_currency_rates_task.apply_async(
        args=[currency_code, on_date.isoformat()],
        countdown=countdown or None,
    )


@celery_app.task(name="sync_daily_rates", bind=True)
def sync_daily_rates_task(self, rate_date: str | None = None) -> dict[str, Any]:
    on_date = date.fromisoformat(rate_date) if rate_date else utc_today()
    with _task_scope(self, "sync_daily_rates", rate_date=on_date.isoformat()):
        with single_run(SWEEP_LOCK_NAME) as acquired:
            if not acquired:
                log_event(logger, "sync.sweep.overlap", rate_date=on_date.isoformat())
                return {"status": "locked"}
            # Held until the staggered units for this day have had time to run.
            marker = f"{SWEEP_LOCK_NAME}:{on_date.isoformat()}"
            run_lock = get_run_lock()
            token = run_lock.acquire(name=marker, ttl_seconds=dispatch_window_seconds())
            if token is None:
                log_event(logger, "sync.sweep.already_dispatched", rate_date=on_date.isoformat())
                return {"status": "already_dispatched", "date": on_date.isoformat()}
            try:
                summary = SyncOrchestrator().dispatch_daily_sync(
                    enqueue_currency_sync, on_date=on_date
                )
            except Exception:
                run_lock.release(name=marker, token=token)
                raise
    return {
        "status": "dispatched",
        "date": summary.on_date.isoformat(),
        "dispatched": summary.dispatched,
        "skipped": summary.skipped,
        "estimated_completion_seconds": summary.estimated_completion_seconds,
    }


@celery_app.task(name="sync_currency_rates", bind=True, max_retries=None)
def sync_currency_rates_task(self, currency_code: str, rate_date: str) -> dict[str, Any]:
    attempt = int(self.request.retries or 0) + 1
    with _task_scope(self, "sync_currency_rates", currency=currency_code, attempt=attempt):
        result = SyncOrchestrator().run_attempt(
            currency_code, on_date=date.fromisoformat(rate_date), attempt=attempt
        )
        if not result.terminal:
            # Redeliver no earlier than retry_in seconds from now.
            raise self.retry(countdown=result.retry_in)
    return {
        "currency": result.currency,
        "state": result.state.value,
        "attempt": result.attempt,
        "successful": result.counts.successful,
        "failed": result.counts.failed,
        "skipped": result.counts.skipped,
        "total": result.counts.total,
        "error": result.error,
    }


@celery_app.task(name="sync_rates", bind=True)
def sync_rates_task(
    self,
    base_currency: str | None = None,
    force: bool = False,
    use_default_base: bool = False,
) -> dict[str, Any]:
    with _task_scope(self, "sync_rates", base_currency=base_currency, force=force):
        stats = SyncOrchestrator().sync_all(
            base_currency, force=force, use_default_base=use_default_base
        )
    return stats.as_dict()
