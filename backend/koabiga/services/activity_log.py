"""Activity log sink. Writes never fail the operation that triggered them."""
import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from koabiga.core.clock import Clock, system_clock
from koabiga.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)

FEE_RULE_CREATED = "fee_rule_created"
FEE_RULE_UPDATED = "fee_rule_updated"
FEE_RULE_DELETED = "fee_rule_deleted"
FEE_RULE_SCHEDULED = "fee_rule_scheduled"
FEE_RULE_ACTIVATED = "fee_rule_activated"
FEE_RULE_APPLIED = "fee_rule_applied"
FEE_RULE_ASSIGNED_TO_UNITS = "fee_rule_assigned_to_units"
FEE_APPLICATION_CANCELLED = "fee_application_cancelled"
FEE_APPLICATIONS_MARKED_OVERDUE = "fee_applications_marked_overdue"
FEE_APPLICATION_PAID = "fee_application_paid"


def record_activity(
    db: Session,
    action: str,
    actor: Optional[str],
    resource_type: str,
    resource_id: Optional[str] = None,
    description: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
    clock: Clock = system_clock,
) -> Optional[ActivityLog]:
    """
    Persist one activity event and commit it.

    Call after the audited operation has committed. Storage errors are rolled
    back and logged; the caller never sees them.
    """
    timestamp = clock.now()
    entry = ActivityLog(
        id=str(uuid.uuid4()),
        action=action,
        actor=actor,
        resource_type=resource_type,
        resource_id=resource_id,
        description=description,
        details={**(extra or {}), "timestamp": timestamp.isoformat()},
        created_at=timestamp,
    )
    logger.info("%s %s=%s by %s", action, resource_type, resource_id, actor)
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record activity %s for %s %s", action, resource_type, resource_id)
        return None
    return entry


def record_fee_rule_activity(
    db: Session,
    action: str,
    rule: Any,
    actor: Optional[str],
    extra: Optional[Dict[str, Any]] = None,
    clock: Clock = system_clock,
) -> Optional[ActivityLog]:
    rule_id, rule_name = rule.id, rule.name
    return record_activity(
        db,
        action,
        actor,
        resource_type="fee_rule",
        resource_id=rule_id,
        description=f"{action.replace('_', ' ').capitalize()}: {rule_name}",
        extra={"rule_id": rule_id, "rule_name": rule_name, **(extra or {})},
        clock=clock,
    )
