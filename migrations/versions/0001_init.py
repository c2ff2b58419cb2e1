"""Начальная схема: участники, розыгрыши, записи участия

Revision ID: 0001
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("wallet_address", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("wallet_address", name="uq_users_wallet_address"),
    )

    op.create_table(
        "raffles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("prize_amount", sa.Numeric(36, 18), nullable=False, server_default="0"),
        sa.Column("prize_symbol", sa.String(16), nullable=False, server_default="ETH"),
        sa.Column("ticket_price", sa.Numeric(36, 18), nullable=False, server_default="0"),
        sa.Column("max_tickets", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("receiving_address", sa.String(), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("winner_user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("winner_drawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("max_tickets > 0", name="ck_raffles_max_tickets_positive"),
        sa.CheckConstraint("status IN ('draft', 'live', 'closed', 'completed')", name="ck_raffles_status"),
    )

    op.create_table(
        "raffle_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("raffle_id", sa.Uuid(), sa.ForeignKey("raffles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tx_hash", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("raffle_id", "user_id", name="uq_raffle_entries_raffle_user"),
        sa.CheckConstraint("quantity > 0", name="ck_raffle_entries_quantity_positive"),
    )

    op.create_index("idx_raffles_status_ends_at", "raffles", ["status", "ends_at"])
    op.create_index("idx_raffles_winner_drawn_at", "raffles", [sa.text("winner_drawn_at DESC")])
    op.create_index("idx_raffle_entries_raffle_created", "raffle_entries", ["raffle_id", "created_at"])
    op.create_index("idx_raffle_entries_user_id", "raffle_entries", ["user_id"])


def downgrade() -> None:
    op.drop_index("idx_raffle_entries_user_id", table_name="raffle_entries")
    op.drop_index("idx_raffle_entries_raffle_created", table_name="raffle_entries")
    op.drop_index("idx_raffles_winner_drawn_at", table_name="raffles")
    op.drop_index("idx_raffles_status_ends_at", table_name="raffles")
    op.drop_table("raffle_entries")
    op.drop_table("raffles")
    op.drop_table("users")
