import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from koabiga.core.database import Base


class RecordStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class Unit(Base):
    """Group of members farming together, belongs to a zone."""

    __tablename__ = "units"

    id = Column(String(36), primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, index=True, nullable=False)
    zone_id = Column(String(36), ForeignKey("zones.id"), nullable=True, index=True)
    status = Column(Enum(RecordStatus), default=RecordStatus.active, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    zone = relationship("Zone", back_populates="units")
    members = relationship("User", back_populates="unit", foreign_keys="User.unit_id")
