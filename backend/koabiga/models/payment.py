from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from koabiga.core.database import Base, JSONType

# Gateway status strings, as delivered by MTN MoMo
PAYMENT_PENDING = "pending"
PAYMENT_SUCCESSFUL = "SUCCESSFUL"
PAYMENT_FAILED_STATUSES = ("FAILED", "REJECTED", "TIMEOUT")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    fee_application_id = Column(
        String(36), ForeignKey("fee_applications.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # Shared by every payment row created from one gateway request
    reference_id = Column(String(64), nullable=False, index=True)
    external_id = Column(String(255), nullable=True, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    phone_number = Column(String(20), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=PAYMENT_PENDING, index=True)
    payment_method = Column(String(50), nullable=False, default="mtn_momo")
    financial_transaction_id = Column(String(255), nullable=True)
    reason = Column(Text, nullable=True)
    callback_data = Column(JSONType, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    fee_application = relationship("FeeApplication", back_populates="payments")
    user = relationship("User")
