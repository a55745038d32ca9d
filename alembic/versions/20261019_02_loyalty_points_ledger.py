"""Loyalty points aggregate and history tables.

Revision ID: 20261019_02
Revises: 20261019_01
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_02"
down_revision: Union[str, None] = "20261019_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        DO $$ BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'loyalty_transaction_type') THEN
                CREATE TYPE loyalty_transaction_type AS ENUM ('earned', 'redeemed', 'adjusted', 'expired');
            END IF;
        END $$;
    """)

    op.execute("""
        DO $$ BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'loyalty_points_status') THEN
                CREATE TYPE loyalty_points_status AS ENUM ('pending', 'available', 'expired');
            END IF;
        END $$;
    """)

    op.create_table(
        "user_loyalty_points",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.dialects.postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("total_points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_expiring_soon", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_earned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", name="uq_user_loyalty_points_user_id"),
    )

    op.create_table(
        "loyalty_points_history",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.dialects.postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order_id", sa.dialects.postgresql.UUID(as_uuid=True), sa.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True),
        sa.Column("transaction_type", sa.dialects.postgresql.ENUM("earned", "redeemed", "adjusted", "expired", name="loyalty_transaction_type", create_type=False), nullable=False),
        sa.Column("status", sa.dialects.postgresql.ENUM("pending", "available", "expired", name="loyalty_points_status", create_type=False), nullable=False, server_default="available"),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("processed_by", sa.String(length=255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("dedupe_key", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("dedupe_key", name="uq_loyalty_points_history_dedupe_key"),
    )
    op.create_index("ix_loyalty_points_history_user_id", "loyalty_points_history", ["user_id"])
    op.create_index("ix_loyalty_points_history_order_id", "loyalty_points_history", ["order_id"])
    op.create_index(
        "ix_loyalty_points_history_expiry_scan",
        "loyalty_points_history",
        ["transaction_type", "is_expired", "expires_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_loyalty_points_history_expiry_scan", table_name="loyalty_points_history")
    op.drop_index("ix_loyalty_points_history_order_id", table_name="loyalty_points_history")
    op.drop_index("ix_loyalty_points_history_user_id", table_name="loyalty_points_history")
    op.drop_table("loyalty_points_history")
    op.drop_table("user_loyalty_points")
    op.execute("DROP TYPE IF EXISTS loyalty_points_status")
    op.execute("DROP TYPE IF EXISTS loyalty_transaction_type")
