import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from koabiga.core.database import Base


class UserRole(str, enum.Enum):
    admin = "admin"
    zone_leader = "zone_leader"
    unit_leader = "unit_leader"
    member = "member"


# Roles that can be billed by fee rules
MEMBER_ROLES = (UserRole.member, UserRole.unit_leader, UserRole.zone_leader)


class UserStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class User(Base):
    """Cooperative member or leader. Members sign in with phone + PIN (handled elsewhere)."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, index=True)
    christian_name = Column(String(255), nullable=False)
    family_name = Column(String(255), nullable=False)
    phone = Column(String(20), unique=True, index=True, nullable=False)
    role = Column(Enum(UserRole), default=UserRole.member, nullable=False, index=True)
    status = Column(Enum(UserStatus), default=UserStatus.active, nullable=False, index=True)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="SET NULL"), nullable=True, index=True)
    zone_id = Column(String(36), ForeignKey("zones.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    unit = relationship("Unit", back_populates="members", foreign_keys=[unit_id])
    fee_applications = relationship("FeeApplication", back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.christian_name} {self.family_name}"
