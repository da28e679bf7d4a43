from sqlalchemy import Column, DateTime, String, Text

from koabiga.core.database import Base, JSONType


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    actor = Column(String(255), nullable=True)  # admin username or the system actor
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(String(36), nullable=True, index=True)
    description = Column(Text, nullable=True)
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
