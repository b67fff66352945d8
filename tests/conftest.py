from __future__ import annotations

import os
from datetime import date
from decimal import Decimal

import pytest

# Set env before any ratebridge imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.ratebridge_test.db")
os.environ.setdefault("RATE_API_KEY", "test-key")
os.environ.setdefault("LOCK_BACKEND", "local")


@pytest.fixture(autouse=True)
def _reset_db_and_locks():
    import ratebridge.models  # noqa: F401
    from ratebridge.core import locks as locks_mod
    from ratebridge.core.db import engine
    from ratebridge.core.models import Base

    locks_mod._lock = None

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture
def add_rate():
    from ratebridge.core.db import SessionLocal
    from ratebridge.modules.rates.models import ExchangeRate

    def _add(base: str, target: str, rate: str, on_date: date) -> None:
        with SessionLocal() as session:
            session.add(
                ExchangeRate(base_code=base, target_code=target, rate=Decimal(rate), date=on_date)
            )
            session.commit()

    return _add
