from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from koabiga.schemas.fee_rule import Pagination


class PaymentInitiate(BaseModel):
    fee_application_ids: list[str] = Field(min_length=1)
    phone_number: str = Field(min_length=10, max_length=15)
    description: str = Field(min_length=1)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    user_id: str
    fee_application_id: Optional[str] = None
    reference_id: str
    external_id: Optional[str] = None
    amount: Decimal
    currency: str
    phone_number: str
    status: str
    financial_transaction_id: Optional[str] = None
    reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PaymentListResponse(BaseModel):
    data: list[PaymentResponse]
    pagination: Pagination


class PaymentCallback(BaseModel):
    """MTN MoMo requesttopay callback body (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")
    reference_id: str = Field(alias="referenceId")
    status: str
    external_id: Optional[str] = Field(None, alias="externalId")
    financial_transaction_id: Optional[str] = Field(None, alias="financialTransactionId")
    reason: Optional[Any] = None


class ReconcileResponse(BaseModel):
    reference_id: str
    status: str
    payments_updated: int
    applications_paid: int
