"""Add fee_rules and fee_rule_unit_assignments

Revision ID: 002
Revises: 001
Create Date: 2026-09-28

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "fee_rules",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "type",
            sa.Enum("land", "equipment", "processing", "storage", "training", "other", name="feetype"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "frequency",
            sa.Enum(
                "daily", "weekly", "monthly", "quarterly", "yearly", "per_transaction", "one_time",
                name="feefrequency",
            ),
            nullable=False,
        ),
        sa.Column("unit_label", sa.String(255), nullable=False),
        sa.Column(
            "status",
            sa.Enum("draft", "scheduled", "active", "inactive", name="feerulestatus"),
            nullable=False,
            server_default="draft",
        ),
        sa.Column(
            "applicable_to",
            sa.Enum(
                "all_members", "unit_leaders", "new_members", "active_members", "specific_units",
                name="applicableto",
            ),
            nullable=False,
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_fee_rules_status_effective_date", "fee_rules", ["status", "effective_date"])
    op.create_index("ix_fee_rules_type_status", "fee_rules", ["type", "status"])
    op.create_index("ix_fee_rules_deleted_at", "fee_rules", ["deleted_at"])

    op.create_table(
        "fee_rule_unit_assignments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("fee_rule_id", sa.String(36), nullable=False),
        sa.Column("unit_id", sa.String(36), nullable=False),
        sa.Column("custom_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["fee_rule_id"], ["fee_rules.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("fee_rule_id", "unit_id", name="uq_fee_rule_unit_assignments_rule_unit"),
    )
    op.create_index(
        "ix_fee_rule_unit_assignments_unit_active",
        "fee_rule_unit_assignments",
        ["unit_id", "is_active"],
    )


def downgrade() -> None:
    op.drop_table("fee_rule_unit_assignments")
    op.drop_table("fee_rules")
    for name in ("applicableto", "feerulestatus", "feefrequency", "feetype"):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
