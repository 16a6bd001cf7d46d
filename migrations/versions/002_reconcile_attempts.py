"""Count failed settlement and refund attempts so the reconciler can stop.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "rides",
        sa.Column("settlement_attempts", sa.Integer, nullable=False, server_default="0"),
    )
    op.add_column(
        "rides",
        sa.Column("refund_attempts", sa.Integer, nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_column("rides", "refund_attempts")
    op.drop_column("rides", "settlement_attempts")
