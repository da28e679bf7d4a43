import enum

from sqlalchemy import Column, Date, DateTime, Enum, Index, Numeric, String, Text
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from koabiga.core.database import Base


class FeeType(str, enum.Enum):
    land = "land"
    equipment = "equipment"
    processing = "processing"
    storage = "storage"
    training = "training"
    other = "other"


class FeeFrequency(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"
    per_transaction = "per_transaction"
    one_time = "one_time"


class FeeRuleStatus(str, enum.Enum):
    draft = "draft"
    scheduled = "scheduled"
    active = "active"
    inactive = "inactive"


class ApplicableTo(str, enum.Enum):
    all_members = "all_members"
    unit_leaders = "unit_leaders"
    new_members = "new_members"
    active_members = "active_members"
    specific_units = "specific_units"


class FeeRule(Base):
    """Billing policy. Expanded into FeeApplications when applied."""

    __tablename__ = "fee_rules"
    __table_args__ = (
        Index("ix_fee_rules_status_effective_date", "status", "effective_date"),
        Index("ix_fee_rules_type_status", "type", "status"),
    )

    id = Column(String(36), primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    type = Column(Enum(FeeType, name="feetype"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    frequency = Column(Enum(FeeFrequency, name="feefrequency"), nullable=False)
    unit_label = Column(String(255), nullable=False)  # "per hectare", "per bag", ...
    status = Column(
        Enum(FeeRuleStatus, name="feerulestatus"),
        default=FeeRuleStatus.draft,
        nullable=False,
    )
    applicable_to = Column(Enum(ApplicableTo, name="applicableto"), nullable=False)
    description = Column(Text, nullable=False)
    effective_date = Column(Date, nullable=False)
    created_by = Column(String(255), nullable=True)
    # Tombstone; the row is kept for the applications that reference it
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    applications = relationship("FeeApplication", back_populates="fee_rule")
    unit_assignments = relationship(
        "FeeRuleUnitAssignment",
        back_populates="fee_rule",
        cascade="all, delete-orphan",
    )

    @hybrid_property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @is_deleted.expression
    def is_deleted(cls):
        return cls.deleted_at.isnot(None)
