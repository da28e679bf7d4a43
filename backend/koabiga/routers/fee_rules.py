from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from koabiga.core.auth import get_current_admin
from koabiga.core.clock import Clock
from koabiga.core.deps import get_clock, get_db
from koabiga.models.admin_user import AdminUser
from koabiga.models.fee_application import FeeApplicationStatus
from koabiga.models.fee_rule import FeeRuleStatus, FeeType
from koabiga.routers.errors import service_errors
from koabiga.schemas.fee_application import FeeApplicationListResponse, FeeApplicationResponse
from koabiga.schemas.fee_rule import (
    ActivationResponse,
    ApplyActiveResponse,
    ApplyResultResponse,
    FeeRuleCreate,
    FeeRuleListResponse,
    FeeRuleResponse,
    FeeRuleSchedule,
    FeeRuleUnitAssign,
    FeeRuleUnitAssignResponse,
    FeeRuleUpdate,
    Pagination,
)
from koabiga.services import fee_scheduling
from koabiga.services.fee_scheduling import ApplyResult, Page

router = APIRouter()


def _pagination(page: Page) -> Pagination:
    return Pagination(
        current_page=page.page,
        last_page=page.last_page,
        per_page=page.per_page,
        total=page.total,
    )


def _apply_message(result: ApplyResult) -> str:
    if result.created_count == 0 and result.skipped_count:
        return "0 created, all eligible users already have open fee applications"
    if result.eligible_count == 0:
        return "No eligible users for this fee rule"
    return f"{result.created_count} fee application(s) created, {result.skipped_count} skipped"


def _apply_response(result: ApplyResult) -> ApplyResultResponse:
    return ApplyResultResponse(**result.to_dict(), message=_apply_message(result))


@router.get("", response_model=FeeRuleListResponse)
def list_fee_rules(
    status_filter: Optional[FeeRuleStatus] = Query(None, alias="status"),
    type: Optional[FeeType] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    per_page: int = 15,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    """List fee rules (deleted rules excluded)."""
    with service_errors():
        result = fee_scheduling.list_fee_rules(
            db,
            status=status_filter,
            type=type,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            per_page=per_page,
        )
    return FeeRuleListResponse(
        data=[FeeRuleResponse.model_validate(r) for r in result.items],
        pagination=_pagination(result),
    )


@router.post("", response_model=FeeRuleResponse, status_code=status.HTTP_201_CREATED)
def create_fee_rule(
    body: FeeRuleCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Create a fee rule. Active rules with a future effective date are stored as scheduled."""
    return fee_scheduling.create_fee_rule(db, body, actor=admin.display_name, clock=clock)


@router.post("/activate-scheduled", response_model=ActivationResponse)
def activate_scheduled_rules(
    dry_run: bool = False,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Activate scheduled rules whose effective date has been reached (dry_run previews only)."""
    report = fee_scheduling.activate_scheduled_rules(db, dry_run=dry_run, actor=admin.display_name, clock=clock)
    if dry_run:
        message = f"{len(report.candidates)} fee rule(s) would be activated"
    else:
        message = f"Activated {report.activated_count} scheduled fee rule(s)"
    return ActivationResponse(
        dry_run=report.dry_run,
        activated_count=report.activated_count,
        candidates=[asdict(c) for c in report.candidates],
        failures=report.failures,
        message=message,
    )


@router.post("/apply-active", response_model=ApplyActiveResponse)
def apply_active_fee_rules(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Apply every active, effective fee rule."""
    outcome = fee_scheduling.apply_active_fee_rules(db, actor=admin.display_name, clock=clock)
    return ApplyActiveResponse(
        applied_count=outcome["applied_count"],
        results=[_apply_response(r) for r in outcome["results"]],
        errors=outcome["errors"],
    )


@router.get("/{rule_id}", response_model=FeeRuleResponse)
def get_fee_rule(
    rule_id: str,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    with service_errors():
        return fee_scheduling.get_fee_rule(db, rule_id)


@router.patch("/{rule_id}", response_model=FeeRuleResponse)
def update_fee_rule(
    rule_id: str,
    body: FeeRuleUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Update a fee rule. Status is re-derived whenever status or effective_date changes."""
    with service_errors():
        return fee_scheduling.update_fee_rule(db, rule_id, body, actor=admin.display_name, clock=clock)


@router.delete("/{rule_id}")
def delete_fee_rule(
    rule_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Soft-delete a fee rule. Refused (409) while fee applications reference it."""
    with service_errors():
        fee_scheduling.delete_fee_rule(db, rule_id, actor=admin.display_name, clock=clock)
    return {"ok": True, "message": "Fee rule deleted"}


@router.post("/{rule_id}/apply", response_model=ApplyResultResponse)
def apply_fee_rule(
    rule_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Create pending fee applications for every eligible member of an active rule."""
    with service_errors():
        result = fee_scheduling.apply_fee_rule(db, rule_id, actor=admin.display_name, clock=clock)
    return _apply_response(result)


@router.post("/{rule_id}/schedule", response_model=FeeRuleResponse)
def schedule_fee_rule(
    rule_id: str,
    body: FeeRuleSchedule,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    with service_errors():
        return fee_scheduling.schedule_fee_rule(
            db, rule_id, body.effective_date, actor=admin.display_name, clock=clock
        )


@router.post("/{rule_id}/units", response_model=FeeRuleUnitAssignResponse)
def assign_fee_rule_to_units(
    rule_id: str,
    body: FeeRuleUnitAssign,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Assign the rule to units, optionally with per-unit amounts. Re-assigning updates in place."""
    with service_errors():
        count = fee_scheduling.assign_fee_rule_to_units(
            db,
            rule_id,
            body.unit_ids,
            body.custom_amounts,
            actor=admin.display_name,
            clock=clock,
        )
    return FeeRuleUnitAssignResponse(rule_id=rule_id, assigned_count=count)


@router.get("/{rule_id}/applications", response_model=FeeApplicationListResponse)
def list_rule_applications(
    rule_id: str,
    status_filter: Optional[FeeApplicationStatus] = Query(None, alias="status"),
    page: int = 1,
    per_page: int = 15,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    with service_errors():
        rule = fee_scheduling.get_fee_rule(db, rule_id, include_deleted=True)
        result = fee_scheduling.list_fee_applications(
            db, fee_rule_id=rule.id, status=status_filter, page=page, per_page=per_page
        )
    return FeeApplicationListResponse(
        data=[FeeApplicationResponse.model_validate(a) for a in result.items],
        pagination=_pagination(result),
    )
