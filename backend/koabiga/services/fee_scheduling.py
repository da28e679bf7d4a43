"""
Fee rule lifecycle and application.

Covers creating and editing rules, activating scheduled rules once their
effective date is reached, expanding an active rule into one FeeApplication
per eligible user, and the follow-up transitions of those applications
(overdue, cancelled).

Every write goes through one transaction per call. Storage errors are rolled
back, logged with the rule id / operation / actor, and re-raised as
PersistenceError.
"""
import logging
import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from koabiga.core.clock import Clock, system_clock
from koabiga.core.config import settings
from koabiga.core.exceptions import NotFound, PersistenceError, PreconditionFailed, ValidationFailed
from koabiga.models.fee_application import (
    OPEN_APPLICATION_INDEX,
    OPEN_STATUSES,
    FeeApplication,
    FeeApplicationStatus,
)
from koabiga.models.fee_rule import ApplicableTo, FeeRule, FeeRuleStatus
from koabiga.models.fee_rule_unit_assignment import FeeRuleUnitAssignment
from koabiga.models.unit import Unit
from koabiga.models.user import MEMBER_ROLES, User, UserRole, UserStatus
from koabiga.schemas.fee_rule import FeeRuleCreate, FeeRuleUpdate
from koabiga.services import activity_log
from koabiga.services.fee_rules import (
    activate,
    compute_due_date,
    is_applicable,
    resolve_fee_amount,
    resolve_status,
)

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {"created_at", "updated_at", "name", "amount", "effective_date", "status", "type"}
MAX_PER_PAGE = 100


@dataclass
class Page:
    items: List[Any]
    page: int
    per_page: int
    total: int

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))


@dataclass
class ApplyResult:
    rule_id: str
    rule_name: str
    eligible_count: int = 0
    created_count: int = 0
    skipped_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ActivationCandidate:
    id: str
    name: str
    type: str
    effective_date: date
    status: str


@dataclass
class ActivationReport:
    dry_run: bool
    candidates: List[ActivationCandidate] = field(default_factory=list)
    activated_count: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)


def _actor(actor: Optional[str]) -> str:
    return actor or settings.FEE_SYSTEM_ACTOR


def _commit(db: Session, operation: str, actor: Optional[str], rule_id: Optional[str] = None) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Fee operation %s failed (rule_id=%s, actor=%s)", operation, rule_id, actor)
        raise PersistenceError(f"{operation} failed", {"rule_id": rule_id, "actor": actor}) from exc


def paginate(query: Query, page: int, per_page: int) -> Page:
    if page < 1 or per_page < 1:
        raise ValidationFailed(
            "Invalid pagination",
            errors=[{"field": "page" if page < 1 else "per_page", "message": "must be at least 1"}],
        )
    per_page = min(per_page, MAX_PER_PAGE)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return Page(items=items, page=page, per_page=per_page, total=total)


def _require_future_date(effective_date: date, today: date) -> None:
    if effective_date <= today:
        raise ValidationFailed(
            "Effective date must be in the future",
            errors=[{"field": "effective_date", "message": f"must be after {today.isoformat()}"}],
        )


def _is_open_application_conflict(exc: IntegrityError) -> bool:
    """True when the error comes from the one-open-application-per-rule-and-user index."""
    diag = getattr(exc.orig, "diag", None)
    if getattr(diag, "constraint_name", None) == OPEN_APPLICATION_INDEX:
        return True
    message = str(exc.orig)
    # SQLite names the columns instead of the index
    return OPEN_APPLICATION_INDEX in message or "fee_applications.fee_rule_id, fee_applications.user_id" in message


# --- Fee rules ---


def get_fee_rule(db: Session, rule_id: str, include_deleted: bool = False) -> FeeRule:
    rule = db.query(FeeRule).filter(FeeRule.id == rule_id).first()
    if not rule or (rule.is_deleted and not include_deleted):
        raise NotFound("Fee rule not found", {"rule_id": rule_id})
    return rule


def list_fee_rules(
    db: Session,
    status: Optional[FeeRuleStatus] = None,
    type: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    per_page: int = 15,
) -> Page:
    if sort_by not in SORTABLE_FIELDS:
        raise ValidationFailed(
            "Invalid sort field",
            errors=[{"field": "sort_by", "message": f"must be one of: {', '.join(sorted(SORTABLE_FIELDS))}"}],
        )
    if sort_order not in ("asc", "desc"):
        raise ValidationFailed("Invalid sort order", errors=[{"field": "sort_order", "message": "must be asc or desc"}])

    query = db.query(FeeRule).filter(FeeRule.deleted_at.is_(None))
    if status is not None:
        query = query.filter(FeeRule.status == status)
    if type is not None:
        query = query.filter(FeeRule.type == type)
    if search:
        query = query.filter(FeeRule.name.ilike(f"%{search}%"))
    column = getattr(FeeRule, sort_by)
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc(), FeeRule.id)
    return paginate(query, page, per_page)


def create_fee_rule(
    db: Session,
    data: FeeRuleCreate,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> FeeRule:
    """
    Create a rule. An "active" request with a future effective date is stored
    as scheduled; a rule that ends up scheduled must have a future effective date.
    """
    actor = _actor(actor)
    today = clock.today()
    status = resolve_status(data.status, data.effective_date, today)
    if status == FeeRuleStatus.scheduled:
        _require_future_date(data.effective_date, today)
    rule = FeeRule(
        id=str(uuid.uuid4()),
        name=data.name,
        type=data.type,
        amount=data.amount,
        frequency=data.frequency,
        unit_label=data.unit_label,
        status=status,
        applicable_to=data.applicable_to,
        description=data.description,
        effective_date=data.effective_date,
        created_by=actor,
    )
    db.add(rule)
    _commit(db, "create_fee_rule", actor, rule.id)
    db.refresh(rule)
    activity_log.record_fee_rule_activity(
        db, activity_log.FEE_RULE_CREATED, rule, actor, {"status": rule.status.value}, clock=clock
    )
    return rule


def update_fee_rule(
    db: Session,
    rule_id: str,
    changes: FeeRuleUpdate,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> FeeRule:
    actor = _actor(actor)
    rule = get_fee_rule(db, rule_id)
    data = changes.model_dump(exclude_unset=True)

    nulls = [name for name, value in data.items() if value is None]
    if nulls:
        raise ValidationFailed(
            "Validation failed",
            errors=[{"field": name, "message": "may not be null"} for name in nulls],
        )

    if "status" in data or "effective_date" in data:
        today = clock.today()
        effective_date = data.get("effective_date", rule.effective_date)
        data["status"] = resolve_status(data.get("status", rule.status), effective_date, today)
        if data["status"] == FeeRuleStatus.scheduled:
            _require_future_date(effective_date, today)
    for name, value in data.items():
        setattr(rule, name, value)

    _commit(db, "update_fee_rule", actor, rule.id)
    db.refresh(rule)
    activity_log.record_fee_rule_activity(
        db, activity_log.FEE_RULE_UPDATED, rule, actor, {"fields": sorted(data)}, clock=clock
    )
    return rule


def delete_fee_rule(
    db: Session,
    rule_id: str,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> FeeRule:
    """Tombstone a rule. Refused once any application references it."""
    actor = _actor(actor)
    rule = get_fee_rule(db, rule_id)
    application_count = db.query(FeeApplication).filter(FeeApplication.fee_rule_id == rule.id).count()
    if application_count:
        raise PreconditionFailed(
            f"Fee rule has {application_count} fee application(s) and cannot be deleted",
            {"rule_id": rule.id, "application_count": application_count},
        )
    rule.deleted_at = clock.now()
    _commit(db, "delete_fee_rule", actor, rule.id)
    activity_log.record_fee_rule_activity(db, activity_log.FEE_RULE_DELETED, rule, actor, clock=clock)
    return rule


# --- Scheduling & activation ---


def schedule_fee_rule(
    db: Session,
    rule_id: str,
    effective_date: date,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> FeeRule:
    actor = _actor(actor)
    rule = get_fee_rule(db, rule_id)
    today = clock.today()
    _require_future_date(effective_date, today)
    if rule.status == FeeRuleStatus.scheduled and rule.effective_date == effective_date:
        return rule

    rule.effective_date = effective_date
    rule.status = resolve_status(FeeRuleStatus.scheduled, effective_date, today)
    _commit(db, "schedule_fee_rule", actor, rule.id)
    logger.info("Fee rule %s scheduled for %s", rule.id, effective_date.isoformat())
    activity_log.record_fee_rule_activity(
        db,
        activity_log.FEE_RULE_SCHEDULED,
        rule,
        actor,
        {"effective_date": effective_date.isoformat()},
        clock=clock,
    )
    return rule


def find_due_scheduled_rules(db: Session, today: date) -> List[FeeRule]:
    return (
        db.query(FeeRule)
        .filter(
            FeeRule.status == FeeRuleStatus.scheduled,
            FeeRule.effective_date <= today,
            FeeRule.deleted_at.is_(None),
        )
        .order_by(FeeRule.effective_date, FeeRule.id)
        .all()
    )


def activate_scheduled_rules(
    db: Session,
    dry_run: bool = False,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> ActivationReport:
    """
    Activate every scheduled rule whose effective date has been reached.

    Each rule is committed on its own so one failure does not hold back the
    rest. With dry_run the candidates are reported and nothing is written.
    """
    actor = _actor(actor)
    today = clock.today()
    report = ActivationReport(dry_run=dry_run)

    for rule in find_due_scheduled_rules(db, today):
        candidate = ActivationCandidate(
            id=rule.id,
            name=rule.name,
            type=rule.type.value,
            effective_date=rule.effective_date,
            status=rule.status.value,
        )
        report.candidates.append(candidate)
        if dry_run:
            continue
        try:
            if not activate(rule, today):
                continue
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to activate fee rule %s (%s)", candidate.id, candidate.name)
            report.failures.append({"rule_id": candidate.id, "rule_name": candidate.name, "error": str(exc)})
            continue
        report.activated_count += 1
        candidate.status = FeeRuleStatus.active.value
        logger.info("Scheduled fee rule %s activated", candidate.id)
        activity_log.record_activity(
            db,
            activity_log.FEE_RULE_ACTIVATED,
            actor,
            resource_type="fee_rule",
            resource_id=candidate.id,
            description=f"Fee rule activated: {candidate.name}",
            extra={"rule_id": candidate.id, "rule_name": candidate.name, "activated_at": clock.now().isoformat()},
            clock=clock,
        )
    return report


# --- Application ---


def _new_member_cutoff(today: date) -> datetime:
    start = today - timedelta(days=settings.FEE_NEW_MEMBER_WINDOW_DAYS)
    return datetime.combine(start, time.min, tzinfo=timezone.utc)


def get_applicable_users(db: Session, rule: FeeRule, today: date) -> List[User]:
    """Users billed by a rule, according to its applicable_to class."""
    members = db.query(User).filter(User.role.in_(MEMBER_ROLES))
    applicable_to = rule.applicable_to

    if applicable_to == ApplicableTo.all_members:
        query = members
    elif applicable_to == ApplicableTo.unit_leaders:
        query = db.query(User).filter(User.role == UserRole.unit_leader)
    elif applicable_to == ApplicableTo.new_members:
        query = members.filter(User.created_at >= _new_member_cutoff(today))
    elif applicable_to == ApplicableTo.active_members:
        query = members.filter(User.status == UserStatus.active)
    elif applicable_to == ApplicableTo.specific_units:
        unit_ids = db.query(FeeRuleUnitAssignment.unit_id).filter(
            FeeRuleUnitAssignment.fee_rule_id == rule.id,
            FeeRuleUnitAssignment.is_active.is_(True),
        )
        query = members.filter(User.unit_id.in_(unit_ids))
    else:
        logger.warning("Unknown applicable_to %r on fee rule %s", applicable_to, rule.id)
        return []
    return query.order_by(User.created_at, User.id).all()


def apply_fee_rule(
    db: Session,
    rule_id: str,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> ApplyResult:
    """
    Create one pending FeeApplication per eligible user of an active rule.

    Users who already owe an open (pending or overdue) application for the
    rule are skipped, so repeated calls never double-bill. The partial unique
    index on fee_applications backs that check against concurrent calls: a
    losing insert is rolled back to its savepoint and counted as skipped.
    """
    actor = _actor(actor)
    rule = get_fee_rule(db, rule_id)
    today = clock.today()
    reason = is_applicable(rule, today)
    if reason:
        raise PreconditionFailed(reason, {"rule_id": rule.id, "status": rule.status.value})

    result = ApplyResult(rule_id=rule.id, rule_name=rule.name)
    applied_at = clock.now().isoformat()
    try:
        users = get_applicable_users(db, rule, today)
        result.eligible_count = len(users)
        logger.info("Applying fee rule %s to %d eligible user(s)", rule.id, len(users))

        assignments = {a.unit_id: a for a in rule.unit_assignments}
        open_user_ids = {
            user_id
            for (user_id,) in db.query(FeeApplication.user_id).filter(
                FeeApplication.fee_rule_id == rule.id,
                FeeApplication.status.in_(OPEN_STATUSES),
            )
        }
        due_date = compute_due_date(rule.frequency, today, settings.FEE_DUE_PERIODS)

        for user in users:
            if user.id in open_user_ids:
                result.skipped_count += 1
                continue
            assignment = assignments.get(user.unit_id) if user.unit_id else None
            amount = resolve_fee_amount(rule.amount, assignment)
            override = assignment.custom_amount if assignment is not None and assignment.is_active else None
            application = FeeApplication(
                id=str(uuid.uuid4()),
                fee_rule_id=rule.id,
                user_id=user.id,
                unit_id=user.unit_id,
                amount=amount,
                due_date=due_date,
                status=FeeApplicationStatus.pending,
                extra_data={
                    "base_amount": str(rule.amount),
                    "unit_override": str(override) if override is not None else None,
                    "final_amount": str(amount),
                    "applied_at": applied_at,
                    "applied_by": actor,
                },
            )
            try:
                with db.begin_nested():
                    db.add(application)
            except IntegrityError as exc:
                if not _is_open_application_conflict(exc):
                    raise
                logger.info("Fee rule %s already has an open application for user %s", rule.id, user.id)
                result.skipped_count += 1
                continue
            result.created_count += 1
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Fee operation apply_fee_rule failed (rule_id=%s, actor=%s)", rule_id, actor)
        raise PersistenceError("apply_fee_rule failed", {"rule_id": rule_id, "actor": actor}) from exc

    _commit(db, "apply_fee_rule", actor, result.rule_id)
    logger.info(
        "Fee rule %s applied: %d created, %d skipped",
        result.rule_id,
        result.created_count,
        result.skipped_count,
    )
    activity_log.record_activity(
        db,
        activity_log.FEE_RULE_APPLIED,
        actor,
        resource_type="fee_rule",
        resource_id=result.rule_id,
        description=f"Fee rule applied: {result.rule_name}",
        extra=result.to_dict(),
        clock=clock,
    )
    return result


def apply_active_fee_rules(
    db: Session,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> Dict[str, Any]:
    """Apply every active, effective rule. A failing rule is reported and the rest still run."""
    rule_ids = [
        rule_id
        for (rule_id,) in db.query(FeeRule.id)
        .filter(
            FeeRule.status == FeeRuleStatus.active,
            FeeRule.effective_date <= clock.today(),
            FeeRule.deleted_at.is_(None),
        )
        .order_by(FeeRule.effective_date, FeeRule.id)
    ]
    results: List[ApplyResult] = []
    errors: List[Dict[str, str]] = []
    for rule_id in rule_ids:
        try:
            results.append(apply_fee_rule(db, rule_id, actor=actor, clock=clock))
        except (PreconditionFailed, NotFound, PersistenceError) as exc:
            errors.append({"rule_id": rule_id, "error": exc.detail})
    return {
        "applied_count": sum(r.created_count for r in results),
        "results": results,
        "errors": errors,
    }


def assign_fee_rule_to_units(
    db: Session,
    rule_id: str,
    unit_ids: Iterable[str],
    custom_amounts: Optional[Mapping[str, Optional[Decimal]]] = None,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> int:
    """
    Upsert one assignment per unit. custom_amounts is sparse: a unit missing
    from it (or mapped to None) is billed the rule's base amount.
    """
    actor = _actor(actor)
    rule = get_fee_rule(db, rule_id)
    custom_amounts = custom_amounts or {}
    unit_ids = list(dict.fromkeys(unit_ids))
    if not unit_ids:
        raise ValidationFailed("No units given", errors=[{"field": "unit_ids", "message": "must not be empty"}])

    errors = []
    known = {uid for (uid,) in db.query(Unit.id).filter(Unit.id.in_(unit_ids))}
    for uid in unit_ids:
        if uid not in known:
            errors.append({"field": f"unit_ids.{uid}", "message": "unit not found"})
    for uid, amount in custom_amounts.items():
        if amount is not None and Decimal(amount) < 0:
            errors.append({"field": f"custom_amounts.{uid}", "message": "must be at least 0"})
    if errors:
        raise ValidationFailed("Validation failed", errors=errors)

    existing = {
        a.unit_id: a
        for a in db.query(FeeRuleUnitAssignment).filter(
            FeeRuleUnitAssignment.fee_rule_id == rule.id,
            FeeRuleUnitAssignment.unit_id.in_(unit_ids),
        )
    }
    for uid in unit_ids:
        amount = custom_amounts.get(uid)
        assignment = existing.get(uid)
        if assignment:
            assignment.custom_amount = amount
            assignment.is_active = True
        else:
            db.add(
                FeeRuleUnitAssignment(
                    id=str(uuid.uuid4()),
                    fee_rule_id=rule.id,
                    unit_id=uid,
                    custom_amount=amount,
                    is_active=True,
                )
            )
    _commit(db, "assign_fee_rule_to_units", actor, rule.id)
    activity_log.record_fee_rule_activity(
        db,
        activity_log.FEE_RULE_ASSIGNED_TO_UNITS,
        rule,
        actor,
        {"unit_ids": unit_ids},
        clock=clock,
    )
    return len(unit_ids)


# --- Fee applications ---


def list_fee_applications(
    db: Session,
    fee_rule_id: Optional[str] = None,
    user_id: Optional[str] = None,
    unit_id: Optional[str] = None,
    status: Optional[FeeApplicationStatus] = None,
    page: int = 1,
    per_page: int = 15,
) -> Page:
    query = db.query(FeeApplication)
    if fee_rule_id:
        query = query.filter(FeeApplication.fee_rule_id == fee_rule_id)
    if user_id:
        query = query.filter(FeeApplication.user_id == user_id)
    if unit_id:
        query = query.filter(FeeApplication.unit_id == unit_id)
    if status is not None:
        query = query.filter(FeeApplication.status == status)
    query = query.order_by(FeeApplication.due_date.desc(), FeeApplication.id)
    return paginate(query, page, per_page)


def mark_overdue_applications(
    db: Session,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> int:
    """Pending applications past their due date become overdue."""
    actor = _actor(actor)
    today = clock.today()
    marked = (
        db.query(FeeApplication)
        .filter(
            FeeApplication.status == FeeApplicationStatus.pending,
            FeeApplication.due_date < today,
        )
        .update({FeeApplication.status: FeeApplicationStatus.overdue}, synchronize_session=False)
    )
    _commit(db, "mark_overdue_applications", actor)
    if marked:
        activity_log.record_activity(
            db,
            activity_log.FEE_APPLICATIONS_MARKED_OVERDUE,
            actor,
            resource_type="fee_application",
            description=f"{marked} fee application(s) marked overdue",
            extra={"marked_count": marked, "as_of": today.isoformat()},
            clock=clock,
        )
    return marked


def cancel_fee_application(
    db: Session,
    application_id: str,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
    clock: Clock = system_clock,
) -> FeeApplication:
    actor = _actor(actor)
    application = db.query(FeeApplication).filter(FeeApplication.id == application_id).first()
    if not application:
        raise NotFound("Fee application not found", {"application_id": application_id})
    if application.status not in OPEN_STATUSES:
        raise PreconditionFailed(
            f"Fee application is {application.status.value} and cannot be cancelled",
            {"application_id": application.id},
        )
    application.status = FeeApplicationStatus.cancelled
    if reason:
        application.notes = f"{application.notes}\n{reason}" if application.notes else reason
    _commit(db, "cancel_fee_application", actor, application.fee_rule_id)
    activity_log.record_activity(
        db,
        activity_log.FEE_APPLICATION_CANCELLED,
        actor,
        resource_type="fee_application",
        resource_id=application.id,
        description="Fee application cancelled",
        extra={"rule_id": application.fee_rule_id, "user_id": application.user_id, "reason": reason},
        clock=clock,
    )
    return application
