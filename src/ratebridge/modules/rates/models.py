from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import Date, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ratebridge.core.models import Base, IntegerPrimaryKey, Timestamped

RATE_PRECISION = 15
RATE_SCALE = 8


class ExchangeRate(IntegerPrimaryKey, Timestamped, Base):
    __tablename__ = "exchange_rates"
    __table_args__ = (
        UniqueConstraint("base_code", "target_code", "date", name="uq_exchange_rates_base_target_date"),
        Index("ix_exchange_rates_base_code_date", "base_code", "date"),
    )

    base_code: Mapped[str] = mapped_column(String(3), index=True)
    target_code: Mapped[str] = mapped_column(String(3), index=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(RATE_PRECISION, RATE_SCALE))
    date: Mapped[dt.date] = mapped_column(Date)

    def __repr__(self) -> str:
        return f"<ExchangeRate {self.base_code}->{self.target_code} {self.date} {self.rate}>"
