from __future__ import annotations

import ratebridge.models  # noqa: F401
from ratebridge.core.config import settings
from ratebridge.core.db import engine
from ratebridge.core.logging import get_logger, log_event
from ratebridge.core.models import Base

logger = get_logger(__name__)


def bootstrap() -> None:
    if settings.environment == "dev" and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)

    if not settings.rate_api_key:
        log_event(logger, "bootstrap.rate_api_key.missing", environment=settings.environment)
