from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from koabiga.core.auth import get_current_admin
from koabiga.core.clock import Clock
from koabiga.core.deps import get_clock, get_db
from koabiga.models.admin_user import AdminUser
from koabiga.models.fee_application import FeeApplicationStatus
from koabiga.routers.errors import service_errors
from koabiga.schemas.fee_application import (
    FeeApplicationCancel,
    FeeApplicationListResponse,
    FeeApplicationResponse,
    MarkOverdueResponse,
)
from koabiga.schemas.fee_rule import Pagination
from koabiga.services import fee_scheduling

router = APIRouter()


@router.get("", response_model=FeeApplicationListResponse)
def list_fee_applications(
    fee_rule_id: Optional[str] = None,
    user_id: Optional[str] = None,
    unit_id: Optional[str] = None,
    status_filter: Optional[FeeApplicationStatus] = Query(None, alias="status"),
    page: int = 1,
    per_page: int = 15,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    with service_errors():
        result = fee_scheduling.list_fee_applications(
            db,
            fee_rule_id=fee_rule_id,
            user_id=user_id,
            unit_id=unit_id,
            status=status_filter,
            page=page,
            per_page=per_page,
        )
    return FeeApplicationListResponse(
        data=[FeeApplicationResponse.model_validate(a) for a in result.items],
        pagination=Pagination(
            current_page=result.page,
            last_page=result.last_page,
            per_page=result.per_page,
            total=result.total,
        ),
    )


@router.post("/mark-overdue", response_model=MarkOverdueResponse)
def mark_overdue(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Flag pending fee applications whose due date has passed."""
    marked = fee_scheduling.mark_overdue_applications(db, actor=admin.display_name, clock=clock)
    return MarkOverdueResponse(marked_count=marked)


@router.post("/{application_id}/cancel", response_model=FeeApplicationResponse)
def cancel_fee_application(
    application_id: str,
    body: Optional[FeeApplicationCancel] = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Cancel a pending or overdue fee application."""
    with service_errors():
        return fee_scheduling.cancel_fee_application(
            db,
            application_id,
            reason=body.reason if body else None,
            actor=admin.display_name,
            clock=clock,
        )
