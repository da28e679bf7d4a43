from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from koabiga.core.database import Base


class FeeRuleUnitAssignment(Base):
    """Attaches a fee rule to a unit, optionally with a unit-specific amount."""

    __tablename__ = "fee_rule_unit_assignments"
    __table_args__ = (
        UniqueConstraint("fee_rule_id", "unit_id", name="uq_fee_rule_unit_assignments_rule_unit"),
        Index("ix_fee_rule_unit_assignments_unit_active", "unit_id", "is_active"),
    )

    id = Column(String(36), primary_key=True, index=True)
    fee_rule_id = Column(String(36), ForeignKey("fee_rules.id", ondelete="CASCADE"), nullable=False)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="CASCADE"), nullable=False)
    custom_amount = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    fee_rule = relationship("FeeRule", back_populates="unit_assignments")
    unit = relationship("Unit")
