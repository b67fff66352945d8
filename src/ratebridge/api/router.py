from __future__ import annotations

from fastapi import APIRouter

from ratebridge.modules.conversion.api import router as conversion_router
from ratebridge.modules.rates.api import router as rates_router

router = APIRouter()

router.include_router(rates_router, prefix="/api")
router.include_router(conversion_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}
