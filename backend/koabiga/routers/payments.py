import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from koabiga.core.auth import get_current_admin
from koabiga.core.clock import Clock
from koabiga.core.deps import get_clock, get_db
from koabiga.models.admin_user import AdminUser
from koabiga.routers.errors import service_errors
from koabiga.schemas.fee_rule import Pagination
from koabiga.schemas.payment import (
    PaymentCallback,
    PaymentInitiate,
    PaymentListResponse,
    PaymentResponse,
    ReconcileResponse,
)
from koabiga.services import momo, payments

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=PaymentListResponse)
def list_payments(
    user_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = 1,
    per_page: int = 15,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    """Payment history, newest first."""
    with service_errors():
        result = payments.list_payments(db, user_id=user_id, status=status_filter, page=page, per_page=per_page)
    return PaymentListResponse(
        data=[PaymentResponse.model_validate(p) for p in result.items],
        pagination=Pagination(
            current_page=result.page,
            last_page=result.last_page,
            per_page=result.per_page,
            total=result.total,
        ),
    )


@router.post("", response_model=list[PaymentResponse])
async def initiate_payment(
    body: PaymentInitiate,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    """Request a MoMo payment covering one member's open fee applications."""
    with service_errors():
        applications = payments.get_payable_applications(db, body.fee_application_ids)
    amount = payments.total_amount(applications)
    try:
        gateway_result = await momo.request_to_pay(
            amount=str(amount),
            phone_number=body.phone_number,
            description=body.description,
        )
    except momo.MomoError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return payments.record_payments(db, applications, gateway_result, body.phone_number, body.description)


@router.post("/callback", response_model=ReconcileResponse)
def payment_callback(
    body: PaymentCallback,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """MoMo callback. Settles the linked fee applications on SUCCESSFUL."""
    logger.info("MoMo callback received for %s: %s", body.reference_id, body.status)
    data = momo.normalize_status(body.reference_id, body.model_dump(by_alias=True))
    with service_errors():
        result = payments.reconcile_payment(
            db,
            data["reference_id"],
            data["status"],
            occurred_at=clock.now(),
            financial_transaction_id=data["financial_transaction_id"],
            reason=data["reason"],
            callback_data=body.model_dump(by_alias=True),
            clock=clock,
        )
    return ReconcileResponse(**result.to_dict())


@router.post("/{reference_id}/refresh", response_model=ReconcileResponse)
async def refresh_payment(
    reference_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    admin: AdminUser = Depends(get_current_admin),
):
    """Poll MoMo for a payment's status and reconcile it."""
    try:
        data = await momo.get_payment_status(reference_id)
    except momo.MomoError as e:
        raise HTTPException(status_code=502, detail=str(e))
    with service_errors():
        result = payments.reconcile_payment(
            db,
            reference_id,
            data["status"],
            occurred_at=clock.now(),
            financial_transaction_id=data["financial_transaction_id"],
            reason=data["reason"],
            actor=admin.display_name,
            clock=clock,
        )
    return ReconcileResponse(**result.to_dict())
