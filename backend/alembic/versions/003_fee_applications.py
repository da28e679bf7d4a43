"""Add fee_applications with one open application per (fee_rule, user)

Revision ID: 003
Revises: 002
Create Date: 2026-09-29

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "fee_applications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("fee_rule_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("unit_id", sa.String(36), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", "overdue", "cancelled", name="feeapplicationstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["fee_rule_id"], ["fee_rules.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_fee_applications_due_date", "fee_applications", ["due_date"])
    op.create_index("ix_fee_applications_user_status", "fee_applications", ["user_id", "status"])
    op.create_index("ix_fee_applications_unit_status", "fee_applications", ["unit_id", "status"])
    op.create_index("ix_fee_applications_rule_status", "fee_applications", ["fee_rule_id", "status"])
    # Backs the "no duplicate open obligation" check in apply against concurrent runs
    op.create_index(
        "uq_fee_applications_open_rule_user",
        "fee_applications",
        ["fee_rule_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'overdue')"),
    )


def downgrade() -> None:
    op.drop_index("uq_fee_applications_open_rule_user", table_name="fee_applications")
    op.drop_table("fee_applications")
    sa.Enum(name="feeapplicationstatus").drop(op.get_bind(), checkfirst=True)
