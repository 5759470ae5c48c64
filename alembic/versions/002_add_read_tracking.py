"""Add read_events and daily_analytics tables

Revision ID: 002
Revises: 001
Create Date: 2026-10-05 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "read_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("article_id", sa.String(36), sa.ForeignKey("articles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reader_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_index("ix_read_events_article_id", "read_events", ["article_id"])
    op.create_index("ix_read_events_read_at", "read_events", ["read_at"])

    op.create_table(
        "daily_analytics",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("article_id", sa.String(36), sa.ForeignKey("articles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("view_count", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("article_id", "date", name="uq_daily_analytics_article_date"),
        sa.CheckConstraint("view_count >= 0", name="ck_daily_analytics_view_count_non_negative"),
    )

    op.create_index("ix_daily_analytics_date", "daily_analytics", ["date"])


def downgrade() -> None:
    op.drop_table("daily_analytics")
    op.drop_table("read_events")
