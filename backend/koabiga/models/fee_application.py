import enum

from sqlalchemy import Column, Date, DateTime, Enum, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from koabiga.core.database import Base, JSONType


class FeeApplicationStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    overdue = "overdue"
    cancelled = "cancelled"


# Outstanding obligations; at most one per (fee_rule, user)
OPEN_STATUSES = (FeeApplicationStatus.pending, FeeApplicationStatus.overdue)

_OPEN_PREDICATE = text("status IN ('pending', 'overdue')")
OPEN_APPLICATION_INDEX = "uq_fee_applications_open_rule_user"


class FeeApplication(Base):
    """A concrete obligation of one user, generated from a fee rule. Never hard-deleted."""

    __tablename__ = "fee_applications"
    __table_args__ = (
        Index("ix_fee_applications_user_status", "user_id", "status"),
        Index("ix_fee_applications_unit_status", "unit_id", "status"),
        Index("ix_fee_applications_rule_status", "fee_rule_id", "status"),
        Index(
            OPEN_APPLICATION_INDEX,
            "fee_rule_id",
            "user_id",
            unique=True,
            postgresql_where=_OPEN_PREDICATE,
            sqlite_where=_OPEN_PREDICATE,
        ),
    )

    id = Column(String(36), primary_key=True, index=True)
    fee_rule_id = Column(String(36), ForeignKey("fee_rules.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="SET NULL"), nullable=True)
    # Snapshot at creation; not recomputed when the rule changes
    amount = Column(Numeric(10, 2), nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    paid_date = Column(Date, nullable=True)
    status = Column(
        Enum(FeeApplicationStatus, name="feeapplicationstatus"),
        default=FeeApplicationStatus.pending,
        nullable=False,
    )
    notes = Column(Text, nullable=True)
    extra_data = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    fee_rule = relationship("FeeRule", back_populates="applications")
    user = relationship("User", back_populates="fee_applications")
    unit = relationship("Unit")
    payments = relationship("Payment", back_populates="fee_application")
