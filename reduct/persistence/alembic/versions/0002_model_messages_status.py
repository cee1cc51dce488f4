"""add model_messages.status

Revision ID: 0002_model_messages_status
Revises: 0001_init
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_model_messages_status"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "model_messages",
        sa.Column("status", sa.String(length=20), nullable=True, server_default=sa.text("'none'")),
    )
    # Assistant replies written before the column existed were complete.
    op.execute(
        "UPDATE model_messages SET status = CASE WHEN role = 'assistant' THEN 'success' ELSE 'none' END "
        "WHERE status IS NULL"
    )
    op.alter_column("model_messages", "status", nullable=False)
    op.create_check_constraint(
        "chk_model_messages_status",
        "model_messages",
        "status IN ('none', 'in_progress', 'success', 'failed', 'stopped')",
    )


def downgrade() -> None:
    op.drop_constraint("chk_model_messages_status", "model_messages", type_="check")
    op.drop_column("model_messages", "status")
