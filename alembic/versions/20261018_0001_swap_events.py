"""Create swap_events table.

Revision ID: 001_swap_events
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_swap_events"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _amount(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(50, 18), nullable=True)


def upgrade() -> None:
    op.create_table(
        "swap_events",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("transaction_hash", sa.String(66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("pool_address", sa.String(42), nullable=True),
        sa.Column("wallet_address", sa.String(42), nullable=True),
        sa.Column("token0_id", sa.String(42), nullable=False),
        sa.Column("token0_symbol", sa.String(128), nullable=True),
        _amount("token0_amount"),
        _amount("token0_value_in_usd"),
        _amount("token0_total_exchanged_usd"),
        sa.Column("token1_id", sa.String(42), nullable=False),
        sa.Column("token1_symbol", sa.String(128), nullable=True),
        _amount("token1_amount"),
        _amount("token1_value_in_usd"),
        _amount("token1_total_exchanged_usd"),
        _amount("eth_price_usd"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_hash", "log_index", name="uq_swap_events_tx_log"),
    )
    op.create_index("idx_swap_events_block_number", "swap_events", ["block_number"])
    op.create_index("idx_swap_events_token0_id", "swap_events", ["token0_id"])
    op.create_index("idx_swap_events_token1_id", "swap_events", ["token1_id"])
    op.create_index("idx_swap_events_created_at", "swap_events", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_swap_events_created_at", table_name="swap_events")
    op.drop_index("idx_swap_events_token1_id", table_name="swap_events")
    op.drop_index("idx_swap_events_token0_id", table_name="swap_events")
    op.drop_index("idx_swap_events_block_number", table_name="swap_events")
    op.drop_table("swap_events")
