"""create exchange rates

Revision ID: 3b1f7c2a9d40
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1f7c2a9d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "exchange_rates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("base_code", sa.String(length=3), nullable=False),
        sa.Column("target_code", sa.String(length=3), nullable=False),
        sa.Column("rate", sa.Numeric(precision=15, scale=8), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "base_code", "target_code", "date", name="uq_exchange_rates_base_target_date"
        ),
    )
    op.create_index(op.f("ix_exchange_rates_base_code"), "exchange_rates", ["base_code"])
    op.create_index(op.f("ix_exchange_rates_target_code"), "exchange_rates", ["target_code"])
    op.create_index(
        "ix_exchange_rates_base_code_date", "exchange_rates", ["base_code", "date"]
    )


def downgrade() -> None:
    op.drop_index("ix_exchange_rates_base_code_date", table_name="exchange_rates")
    op.drop_index(op.f("ix_exchange_rates_target_code"), table_name="exchange_rates")
    op.drop_index(op.f("ix_exchange_rates_base_code"), table_name="exchange_rates")
    op.drop_table("exchange_rates")
