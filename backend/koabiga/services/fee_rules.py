"""
Fee rule business rules as plain functions.

Nothing here touches a session: callers pass entity values and "today" in,
and persist whatever changed. That keeps the activation gate and the amount
resolution testable without a database.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

from dateutil.relativedelta import relativedelta

from koabiga.models.fee_rule import FeeFrequency, FeeRule, FeeRuleStatus

StatusLike = Union[FeeRuleStatus, str]


def _as_status(value: StatusLike) -> FeeRuleStatus:
    return value if isinstance(value, FeeRuleStatus) else FeeRuleStatus(value)


def resolve_status(requested: StatusLike, effective_date: date, today: date) -> FeeRuleStatus:
    """
    Status to persist for a rule on create or update.

    A rule can only be active once its effective date is reached: a request
    for "active" with a future date is stored as "scheduled", and "scheduled"
    is always kept as requested. Callers reject a scheduled result whose
    effective date is not in the future.
    """
    status = _as_status(requested)
    if status == FeeRuleStatus.scheduled:
        return FeeRuleStatus.scheduled
    if status == FeeRuleStatus.active and effective_date > today:
        return FeeRuleStatus.scheduled
    return status


def should_be_activated(rule: FeeRule, today: date) -> bool:
    return _as_status(rule.status) == FeeRuleStatus.scheduled and rule.effective_date <= today


def activate(rule: FeeRule, today: date) -> bool:
    """Move a due scheduled rule to active. Returns False (and changes nothing) when not due."""
    if not should_be_activated(rule, today):
        return False
    rule.status = FeeRuleStatus.active
    return True


def is_applicable(rule: FeeRule, today: date) -> Optional[str]:
    """Reason the rule cannot be applied today, or None when it can."""
    if rule.is_deleted:
        return "Fee rule has been deleted"
    if _as_status(rule.status) != FeeRuleStatus.active:
        return f"Fee rule is {_as_status(rule.status).value}, only active rules can be applied"
    if rule.effective_date > today:
        return f"Fee rule is not effective until {rule.effective_date.isoformat()}"
    return None


def resolve_fee_amount(base_amount: Decimal, assignment: Optional[Any]) -> Decimal:
    """Unit override wins when the assignment is active and carries a custom amount (zero included)."""
    if assignment is not None and assignment.is_active and assignment.custom_amount is not None:
        return Decimal(assignment.custom_amount)
    return Decimal(base_amount)


def compute_due_date(
    frequency: Union[FeeFrequency, str],
    today: date,
    periods: Mapping[str, Dict[str, int]],
) -> date:
    """today + one billing period; per_transaction/one_time use their (grace) offset."""
    key = frequency.value if isinstance(frequency, FeeFrequency) else str(frequency)
    offset = periods.get(key)
    if offset is None:
        raise KeyError(f"No due period configured for frequency {key!r}")
    return today + relativedelta(**offset)
