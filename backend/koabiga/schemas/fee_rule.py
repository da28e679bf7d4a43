from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from koabiga.models.fee_rule import ApplicableTo, FeeFrequency, FeeRuleStatus, FeeType

Money = Decimal


class FeeRuleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: FeeType
    amount: Money = Field(ge=0, max_digits=10, decimal_places=2)
    frequency: FeeFrequency
    unit_label: str = Field(min_length=1, max_length=255)
    status: FeeRuleStatus
    applicable_to: ApplicableTo
    description: str = Field(min_length=1)
    effective_date: date


class FeeRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[FeeType] = None
    amount: Optional[Money] = Field(None, ge=0, max_digits=10, decimal_places=2)
    frequency: Optional[FeeFrequency] = None
    unit_label: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[FeeRuleStatus] = None
    applicable_to: Optional[ApplicableTo] = None
    description: Optional[str] = Field(None, min_length=1)
    effective_date: Optional[date] = None


class FeeRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    type: FeeType
    amount: Decimal
    frequency: FeeFrequency
    unit_label: str
    status: FeeRuleStatus
    applicable_to: ApplicableTo
    description: str
    effective_date: date
    created_by: Optional[str] = None
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int


class FeeRuleListResponse(BaseModel):
    data: list[FeeRuleResponse]
    pagination: Pagination


class FeeRuleSchedule(BaseModel):
    effective_date: date


class FeeRuleUnitAssign(BaseModel):
    unit_ids: list[str] = Field(min_length=1)
    # Sparse: units missing here are billed the rule's base amount
    custom_amounts: dict[str, Optional[Money]] = {}


class FeeRuleUnitAssignResponse(BaseModel):
    rule_id: str
    assigned_count: int


class ApplyResultResponse(BaseModel):
    rule_id: str
    rule_name: str
    eligible_count: int
    created_count: int
    skipped_count: int
    message: str


class ApplyActiveResponse(BaseModel):
    applied_count: int
    results: list[ApplyResultResponse]
    errors: list[dict[str, str]]


class ActivationCandidateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    type: str
    effective_date: date
    status: str


class ActivationResponse(BaseModel):
    dry_run: bool
    activated_count: int
    candidates: list[ActivationCandidateResponse]
    failures: list[dict[str, str]]
    message: str
