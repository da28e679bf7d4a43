"""
Payment bookkeeping around the MoMo gateway.

The gateway owns the money movement; this module only records payment rows
and moves fee applications to paid once the gateway reports success.
"""
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from koabiga.core.clock import Clock, system_clock
from koabiga.core.exceptions import NotFound, PersistenceError, PreconditionFailed, ValidationFailed
from koabiga.models.fee_application import OPEN_STATUSES, FeeApplication, FeeApplicationStatus
from koabiga.models.payment import PAYMENT_PENDING, PAYMENT_SUCCESSFUL, Payment
from koabiga.services import activity_log
from koabiga.services.fee_scheduling import Page, paginate

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    reference_id: str
    status: str
    payments_updated: int = 0
    applications_paid: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def get_payable_applications(db: Session, application_ids: List[str]) -> List[FeeApplication]:
    """Load the applications a single payment will settle, or explain why they can't be paid."""
    application_ids = list(dict.fromkeys(application_ids))
    applications = db.query(FeeApplication).filter(FeeApplication.id.in_(application_ids)).all()
    if len(applications) != len(application_ids):
        found = {a.id for a in applications}
        raise NotFound(
            "One or more fee applications not found",
            {"missing": [i for i in application_ids if i not in found]},
        )
    if len({a.user_id for a in applications}) > 1:
        raise ValidationFailed(
            "Fee applications belong to different members",
            errors=[{"field": "fee_application_ids", "message": "must all belong to one member"}],
        )
    closed = [a.id for a in applications if a.status not in OPEN_STATUSES]
    if closed:
        raise PreconditionFailed("Some fees are already paid or cancelled", {"application_ids": closed})
    pending = (
        db.query(Payment.reference_id)
        .filter(Payment.fee_application_id.in_(application_ids), Payment.status == PAYMENT_PENDING)
        .all()
    )
    if pending:
        raise PreconditionFailed(
            "Payments are already pending for some of these fees",
            {"pending_references": sorted({r for (r,) in pending})},
        )
    return applications


def list_payments(
    db: Session,
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    per_page: int = 15,
) -> Page:
    """Payment history, newest first."""
    query = db.query(Payment)
    if user_id is not None:
        query = query.filter(Payment.user_id == user_id)
    if status is not None:
        query = query.filter(Payment.status == status)
    query = query.order_by(Payment.created_at.desc(), Payment.id)
    return paginate(query, page, per_page)


def total_amount(applications: List[FeeApplication]) -> Decimal:
    return sum((Decimal(a.amount) for a in applications), Decimal("0"))


def record_payments(
    db: Session,
    applications: List[FeeApplication],
    gateway_result: Dict[str, str],
    phone_number: str,
    description: str,
) -> List[Payment]:
    """One pending payment row per application, all sharing the gateway reference."""
    payments = []
    for application in applications:
        payment = Payment(
            id=str(uuid.uuid4()),
            user_id=application.user_id,
            fee_application_id=application.id,
            reference_id=gateway_result["reference_id"],
            external_id=gateway_result.get("external_id"),
            amount=application.amount,
            currency=gateway_result.get("currency", "EUR"),
            phone_number=phone_number,
            description=description,
            status=PAYMENT_PENDING,
            payment_method="mtn_momo",
        )
        db.add(payment)
        payments.append(payment)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to record payments for reference %s", gateway_result["reference_id"])
        raise PersistenceError("record_payments failed") from exc
    for payment in payments:
        db.refresh(payment)
    return payments


def reconcile_payment(
    db: Session,
    reference_id: str,
    status: str,
    occurred_at: Optional[datetime] = None,
    financial_transaction_id: Optional[str] = None,
    reason: Optional[str] = None,
    callback_data: Optional[Dict[str, Any]] = None,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> ReconcileResult:
    """
    Apply a gateway status to every payment sharing reference_id.

    SUCCESSFUL settles the linked pending/overdue applications with
    paid_date taken from occurred_at. Any other status only updates the
    payment rows. A payment already SUCCESSFUL is final; later reports of
    another status leave it untouched.
    """
    occurred_at = occurred_at or clock.now()
    payments = db.query(Payment).filter(Payment.reference_id == reference_id).all()
    if not payments:
        raise NotFound("Payment not found", {"reference_id": reference_id})

    result = ReconcileResult(reference_id=reference_id, status=status)
    paid_ids = []
    for payment in payments:
        if payment.status == PAYMENT_SUCCESSFUL and status != PAYMENT_SUCCESSFUL:
            logger.warning(
                "Ignoring %s for payment %s: reference %s already succeeded",
                status,
                payment.id,
                reference_id,
            )
            continue
        payment.status = status
        payment.financial_transaction_id = financial_transaction_id or payment.financial_transaction_id
        payment.reason = reason
        if callback_data is not None:
            payment.callback_data = callback_data
        result.payments_updated += 1
        if status != PAYMENT_SUCCESSFUL:
            continue
        payment.paid_at = payment.paid_at or occurred_at
        application = payment.fee_application
        if application is None:
            continue
        if application.status in OPEN_STATUSES:
            application.status = FeeApplicationStatus.paid
            application.paid_date = occurred_at.date()
            paid_ids.append(application.id)
        elif application.status == FeeApplicationStatus.cancelled:
            logger.warning(
                "Payment %s succeeded for cancelled fee application %s",
                reference_id,
                application.id,
            )
    result.applications_paid = len(paid_ids)

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to reconcile payment %s (status %s)", reference_id, status)
        raise PersistenceError("reconcile_payment failed", {"reference_id": reference_id}) from exc

    logger.info("Payment %s reconciled as %s, %d fee(s) paid", reference_id, status, len(paid_ids))
    if paid_ids:
        activity_log.record_activity(
            db,
            activity_log.FEE_APPLICATION_PAID,
            actor or "payment_gateway",
            resource_type="payment",
            resource_id=payments[0].id,
            description=f"Payment {reference_id} settled {len(paid_ids)} fee(s)",
            extra={"reference_id": reference_id, "fee_application_ids": paid_ids},
            clock=clock,
        )
    return result
