"""Initial schema - escrows and notifications

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "escrows",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("amount", sa.Numeric(24, 12), nullable=False),
        sa.Column("initiator_id", sa.String(255), nullable=False),
        sa.Column("payer_id", sa.String(255), nullable=False, index=True),
        sa.Column("payee_id", sa.String(255), nullable=False, index=True),
        sa.Column("payer", postgresql.JSONB, nullable=False),
        sa.Column("payee", postgresql.JSONB, nullable=False),
        sa.Column("arbiter_id", sa.String(255), nullable=False, index=True),
        sa.Column("arbiter_involved", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(40), nullable=False, server_default="pending_funding", index=True),
        sa.Column("default_outcome", sa.String(30), nullable=False),
        sa.Column("duration_hours", sa.Integer, nullable=False),
        sa.Column("creation_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_update_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("chat_log", postgresql.JSONB, nullable=True),
        sa.Column("dispute_reason", sa.Text, nullable=True),
        sa.Column("resolution_details", sa.Text, nullable=True),
        sa.Column("arbiter_ruling", sa.String(10), nullable=False, server_default="none"),
        sa.Column("multisig_address", sa.String(255), nullable=True),
        sa.Column("history", postgresql.JSONB, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("escrow_id", sa.String(64), nullable=True, index=True),
        sa.Column("severity", sa.String(10), nullable=False, server_default="info"),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("escrows")
