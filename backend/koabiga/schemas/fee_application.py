from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from koabiga.models.fee_application import FeeApplicationStatus
from koabiga.schemas.fee_rule import Pagination


class FeeApplicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    fee_rule_id: str
    user_id: str
    unit_id: Optional[str] = None
    amount: Decimal
    due_date: date
    paid_date: Optional[date] = None
    status: FeeApplicationStatus
    notes: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="extra_data")
    created_at: Optional[datetime] = None


class FeeApplicationListResponse(BaseModel):
    data: list[FeeApplicationResponse]
    pagination: Pagination


class FeeApplicationCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class MarkOverdueResponse(BaseModel):
    marked_count: int
