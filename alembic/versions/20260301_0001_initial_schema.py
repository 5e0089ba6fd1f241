"""Initial schema for tokens, trades and the activity timeline.

Revision ID: 001_initial
Revises:
Create Date: 2026-03-01 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tokens table
    op.create_table(
        "tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("symbol", sa.String(32), nullable=False),
        sa.Column("contract_address", sa.String(256), nullable=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_uri", sa.Text(), nullable=True),
        sa.Column("creator", sa.String(128), nullable=False),
        sa.Column("registration_tx_id", sa.String(66), nullable=True),
        sa.Column("tokens_sold", sa.Numeric(38, 8), nullable=False),
        sa.Column("reserve", sa.Numeric(38, 8), nullable=False),
        sa.Column("current_price", sa.Numeric(38, 8), nullable=False),
        sa.Column("market_cap", sa.Numeric(38, 8), nullable=False),
        sa.Column("is_graduated", sa.Boolean(), nullable=False),
        sa.Column("graduated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("symbol", name="uq_tokens_symbol"),
        sa.UniqueConstraint("contract_address", name="uq_tokens_contract_address"),
    )
    op.create_index("idx_tokens_created_at", "tokens", ["created_at"])
    op.create_index("idx_tokens_market_cap", "tokens", ["market_cap"])

    # Trades table
    op.create_table(
        "trades",
        sa.Column("tx_id", sa.String(66), nullable=False),
        sa.Column("token_id", sa.Integer(), nullable=False),
        sa.Column("trader", sa.String(128), nullable=False),
        sa.Column("trade_type", sa.String(4), nullable=False),
        sa.Column("stx_amount", sa.Numeric(38, 8), nullable=False),
        sa.Column("token_amount", sa.Numeric(38, 8), nullable=False),
        sa.Column("price_at_trade", sa.Numeric(38, 8), nullable=False),
        sa.Column("block_height", sa.Integer(), nullable=True),
        sa.Column("observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("tx_id"),
    )
    op.create_index("idx_trades_token_observed", "trades", ["token_id", "observed_at"])
    op.create_index("idx_trades_trader", "trades", ["trader"])

    # Activity timeline
    op.create_table(
        "activity",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("tx_id", sa.String(66), nullable=False),
        sa.Column("address", sa.String(128), nullable=False),
        sa.Column("token_id", sa.Integer(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_id", "event_type", name="uq_activity_tx_event"),
    )
    op.create_index("idx_activity_created_at", "activity", ["created_at"])
    op.create_index("idx_activity_type_created", "activity", ["event_type", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_activity_type_created", table_name="activity")
    op.drop_index("idx_activity_created_at", table_name="activity")
    op.drop_table("activity")

    op.drop_index("idx_trades_trader", table_name="trades")
    op.drop_index("idx_trades_token_observed", table_name="trades")
    op.drop_table("trades")

    op.drop_index("idx_tokens_market_cap", table_name="tokens")
    op.drop_index("idx_tokens_created_at", table_name="tokens")
    op.drop_table("tokens")
