"""Tests for the fee scheduling service against an in-memory database."""
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from koabiga.core.exceptions import NotFound, PersistenceError, PreconditionFailed, ValidationFailed
from koabiga.models.activity_log import ActivityLog
from koabiga.models.fee_application import FeeApplication, FeeApplicationStatus
from koabiga.models.fee_rule import ApplicableTo, FeeFrequency, FeeRule, FeeRuleStatus, FeeType
from koabiga.models.fee_rule_unit_assignment import FeeRuleUnitAssignment
from koabiga.models.user import UserRole, UserStatus
from koabiga.schemas.fee_rule import FeeRuleCreate, FeeRuleUpdate
from koabiga.services import activity_log, fee_scheduling
from tests.conftest import TODAY, make_application, make_rule, make_unit, make_user

TOMORROW = TODAY + timedelta(days=1)
YESTERDAY = TODAY - timedelta(days=1)


def _create_payload(**overrides):
    data = {
        "name": "Tractor hire",
        "type": FeeType.equipment,
        "amount": Decimal("25.00"),
        "frequency": FeeFrequency.per_transaction,
        "unit_label": "per hour",
        "status": FeeRuleStatus.active,
        "applicable_to": ApplicableTo.all_members,
        "description": "Cooperative tractor",
        "effective_date": TODAY,
    }
    data.update(overrides)
    return FeeRuleCreate(**data)


def _applications(db, rule_id):
    return db.query(FeeApplication).filter(FeeApplication.fee_rule_id == rule_id).all()


def _activity(db, action):
    return db.query(ActivityLog).filter(ActivityLog.action == action).all()


class TestCreateAndUpdate:
    def test_active_with_future_date_is_stored_as_scheduled(self, db, clock):
        rule = fee_scheduling.create_fee_rule(db, _create_payload(effective_date=TOMORROW), actor="secretary", clock=clock)
        assert rule.status == FeeRuleStatus.scheduled
        assert rule.created_by == "secretary"
        assert len(_activity(db, activity_log.FEE_RULE_CREATED)) == 1

    def test_active_effective_today_is_active(self, db, clock):
        rule = fee_scheduling.create_fee_rule(db, _create_payload(), clock=clock)
        assert rule.status == FeeRuleStatus.active
        assert rule.created_by == "System"

    def test_moving_effective_date_forward_reschedules(self, db, clock):
        rule = make_rule(db)
        updated = fee_scheduling.update_fee_rule(
            db, rule.id, FeeRuleUpdate(effective_date=TODAY + timedelta(days=30)), clock=clock
        )
        assert updated.status == FeeRuleStatus.scheduled

    @pytest.mark.parametrize("effective_date", [TODAY - timedelta(days=30), TODAY])
    def test_create_scheduled_without_future_date_is_rejected(self, db, clock, effective_date):
        payload = _create_payload(status=FeeRuleStatus.scheduled, effective_date=effective_date)
        with pytest.raises(ValidationFailed) as exc_info:
            fee_scheduling.create_fee_rule(db, payload, clock=clock)
        assert exc_info.value.errors[0]["field"] == "effective_date"
        assert db.query(FeeRule).count() == 0

    def test_update_to_scheduled_with_past_date_is_rejected(self, db, clock):
        rule = make_rule(db, status=FeeRuleStatus.draft, effective_date=TODAY - timedelta(days=5))
        with pytest.raises(ValidationFailed) as exc_info:
            fee_scheduling.update_fee_rule(db, rule.id, FeeRuleUpdate(status=FeeRuleStatus.scheduled), clock=clock)
        assert exc_info.value.errors[0]["field"] == "effective_date"
        db.expire_all()
        assert db.get(FeeRule, rule.id).status == FeeRuleStatus.draft

    def test_moving_scheduled_rule_into_the_past_is_rejected(self, db, clock):
        rule = make_rule(db, status=FeeRuleStatus.scheduled, effective_date=TOMORROW)
        with pytest.raises(ValidationFailed):
            fee_scheduling.update_fee_rule(db, rule.id, FeeRuleUpdate(effective_date=YESTERDAY), clock=clock)
        db.expire_all()
        unchanged = db.get(FeeRule, rule.id)
        assert (unchanged.status, unchanged.effective_date) == (FeeRuleStatus.scheduled, TOMORROW)

    def test_amount_change_keeps_status(self, db, clock):
        rule = make_rule(db, status=FeeRuleStatus.draft)
        updated = fee_scheduling.update_fee_rule(db, rule.id, FeeRuleUpdate(amount=Decimal("75")), clock=clock)
        assert updated.amount == Decimal("75")
        assert updated.status == FeeRuleStatus.draft

    def test_explicit_null_is_rejected(self, db, clock):
        rule = make_rule(db)
        with pytest.raises(ValidationFailed) as exc_info:
            fee_scheduling.update_fee_rule(db, rule.id, FeeRuleUpdate(name=None), clock=clock)
        assert exc_info.value.errors == [{"field": "name", "message": "may not be null"}]

    def test_applications_keep_their_amount_when_rule_changes(self, db, clock):
        rule = make_rule(db, amount="50")
        make_user(db, "0770000001")
        fee_scheduling.apply_fee_rule(db, rule.id, clock=clock)
        fee_scheduling.update_fee_rule(db, rule.id, FeeRuleUpdate(amount=Decimal("80")), clock=clock)
        [application] = _applications(db, rule.id)
        assert application.amount == Decimal("50")


class TestListFeeRules:
    def test_filters_and_excludes_deleted(self, db, clock):
        make_rule(db, name="Land fee")
        make_rule(db, name="Storage fee", type=FeeType.storage, status=FeeRuleStatus.draft)
        gone = make_rule(db, name="Old land fee")
        fee_scheduling.delete_fee_rule(db, gone.id, clock=clock)

        page = fee_scheduling.list_fee_rules(db)
        assert sorted(r.name for r in page.items) == ["Land fee", "Storage fee"]
        assert page.total == 2

        page = fee_scheduling.list_fee_rules(db, type=FeeType.storage)
        assert [r.name for r in page.items] == ["Storage fee"]

        page = fee_scheduling.list_fee_rules(db, search="land")
        assert [r.name for r in page.items] == ["Land fee"]

    def test_pagination(self, db):
        for i in range(5):
            make_rule(db, name=f"Rule {i}")
        page = fee_scheduling.list_fee_rules(db, sort_by="name", sort_order="asc", page=2, per_page=2)
        assert [r.name for r in page.items] == ["Rule 2", "Rule 3"]
        assert page.last_page == 3

    def test_rejects_unknown_sort_field(self, db):
        with pytest.raises(ValidationFailed):
            fee_scheduling.list_fee_rules(db, sort_by="hashed_password")


class TestDelete:
    def test_refused_while_applications_exist(self, db, clock):
        rule = make_rule(db)
        make_application(db, rule, make_user(db, "0770000001"))
        with pytest.raises(PreconditionFailed):
            fee_scheduling.delete_fee_rule(db, rule.id, clock=clock)
        assert db.get(FeeRule, rule.id).is_deleted is False

    def test_soft_delete_keeps_the_row(self, db, clock):
        rule = make_rule(db)
        rule_id = rule.id
        fee_scheduling.delete_fee_rule(db, rule_id, clock=clock)

        with pytest.raises(NotFound):
            fee_scheduling.get_fee_rule(db, rule_id)
        kept = fee_scheduling.get_fee_rule(db, rule_id, include_deleted=True)
        assert kept.is_deleted is True
        assert db.query(FeeRule).filter(FeeRule.is_deleted).count() == 1

    def test_deleted_rule_cannot_be_applied_or_scheduled(self, db, clock):
        rule = make_rule(db)
        rule_id = rule.id
        fee_scheduling.delete_fee_rule(db, rule_id, clock=clock)
        with pytest.raises(NotFound):
            fee_scheduling.apply_fee_rule(db, rule_id, clock=clock)
        with pytest.raises(NotFound):
            fee_scheduling.schedule_fee_rule(db, rule_id, TOMORROW, clock=clock)


class TestSchedule:
    def test_sets_date_and_status(self, db, clock):
        rule = make_rule(db)
        scheduled = fee_scheduling.schedule_fee_rule(db, rule.id, TOMORROW, clock=clock)
        assert scheduled.status == FeeRuleStatus.scheduled
        assert scheduled.effective_date == TOMORROW
        assert len(_activity(db, activity_log.FEE_RULE_SCHEDULED)) == 1

    @pytest.mark.parametrize("effective_date", [TODAY, YESTERDAY])
    def test_date_must_be_in_the_future(self, db, clock, effective_date):
        rule = make_rule(db)
        with pytest.raises(ValidationFailed):
            fee_scheduling.schedule_fee_rule(db, rule.id, effective_date, clock=clock)
        assert db.get(FeeRule, rule.id).status == FeeRuleStatus.active

    def test_same_date_twice_is_a_no_op(self, db, clock):
        rule = make_rule(db)
        fee_scheduling.schedule_fee_rule(db, rule.id, TOMORROW, clock=clock)
        again = fee_scheduling.schedule_fee_rule(db, rule.id, TOMORROW, clock=clock)
        assert again.status == FeeRuleStatus.scheduled
        assert again.effective_date == TOMORROW
        assert len(_activity(db, activity_log.FEE_RULE_SCHEDULED)) == 1


class TestActivateScheduledRules:
    def test_activates_due_rule_once(self, db, clock):
        rule = make_rule(db, status=FeeRuleStatus.scheduled, effective_date=YESTERDAY)
        rule_id = rule.id

        report = fee_scheduling.activate_scheduled_rules(db, clock=clock)
        assert report.activated_count == 1
        assert [c.id for c in report.candidates] == [rule_id]
        assert db.get(FeeRule, rule_id).status == FeeRuleStatus.active
        [event] = _activity(db, activity_log.FEE_RULE_ACTIVATED)
        assert event.resource_id == rule_id
        assert event.details["rule_name"] == "Land fee"

        report = fee_scheduling.activate_scheduled_rules(db, clock=clock)
        assert report.activated_count == 0
        assert report.candidates == []
        assert len(_activity(db, activity_log.FEE_RULE_ACTIVATED)) == 1

    def test_effective_today_is_due_tomorrow_is_not(self, db, clock):
        due = make_rule(db, name="Due", status=FeeRuleStatus.scheduled, effective_date=TODAY)
        later = make_rule(db, name="Later", status=FeeRuleStatus.scheduled, effective_date=TOMORROW)
        due_id, later_id = due.id, later.id

        report = fee_scheduling.activate_scheduled_rules(db, clock=clock)
        assert report.activated_count == 1
        assert db.get(FeeRule, due_id).status == FeeRuleStatus.active
        assert db.get(FeeRule, later_id).status == FeeRuleStatus.scheduled

        clock.advance(1)
        report = fee_scheduling.activate_scheduled_rules(db, clock=clock)
        assert [c.id for c in report.candidates] == [later_id]
        assert db.get(FeeRule, later_id).status == FeeRuleStatus.active

    def test_dry_run_changes_nothing(self, db, clock):
        rule = make_rule(db, status=FeeRuleStatus.scheduled, effective_date=YESTERDAY)
        rule_id = rule.id

        report = fee_scheduling.activate_scheduled_rules(db, dry_run=True, clock=clock)
        assert report.dry_run is True
        assert report.activated_count == 0
        assert [(c.id, c.status) for c in report.candidates] == [(rule_id, "scheduled")]
        assert db.get(FeeRule, rule_id).status == FeeRuleStatus.scheduled
        assert _activity(db, activity_log.FEE_RULE_ACTIVATED) == []

    def test_deleted_rules_are_skipped(self, db, clock):
        rule = make_rule(db, status=FeeRuleStatus.scheduled, effective_date=YESTERDAY)
        fee_scheduling.delete_fee_rule(db, rule.id, clock=clock)
        assert fee_scheduling.activate_scheduled_rules(db, clock=clock).candidates == []

    def test_one_failing_rule_does_not_stop_the_rest(self, db, clock, monkeypatch):
        bad = make_rule(db, name="Bad", status=FeeRuleStatus.scheduled, effective_date=YESTERDAY)
        good = make_rule(db, name="Good", status=FeeRuleStatus.scheduled, effective_date=YESTERDAY)
        bad_id, good_id = bad.id, good.id
        real_activate = fee_scheduling.activate

        def flaky_activate(rule, today):
            if rule.id == bad_id:
                raise SQLAlchemyError("database is locked")
            return real_activate(rule, today)

        monkeypatch.setattr(fee_scheduling, "activate", flaky_activate)
        report = fee_scheduling.activate_scheduled_rules(db, clock=clock)

        assert report.activated_count == 1
        assert [f["rule_id"] for f in report.failures] == [bad_id]
        assert db.get(FeeRule, good_id).status == FeeRuleStatus.active
        assert db.get(FeeRule, bad_id).status == FeeRuleStatus.scheduled


class TestApplicableUsers:
    @pytest.fixture
    def people(self, db):
        north, south = make_unit(db, "N1"), make_unit(db, "S1")
        return {
            "member": make_user(db, "0770000001", unit=north),
            "inactive": make_user(db, "0770000002", status=UserStatus.inactive, unit=south),
            "unit_leader": make_user(db, "0770000003", role=UserRole.unit_leader, unit=south),
            "zone_leader": make_user(db, "0770000004", role=UserRole.zone_leader),
            "newcomer": make_user(db, "0770000005", unit=north, created_days_ago=10),
            "staff": make_user(db, "0770000006", role=UserRole.admin),
            "north": north,
            "south": south,
        }

    def _phones(self, db, clock, rule):
        return sorted(u.phone for u in fee_scheduling.get_applicable_users(db, rule, clock.today()))

    def test_all_members_covers_the_three_roles(self, db, clock, people):
        rule = make_rule(db, applicable_to=ApplicableTo.all_members)
        assert self._phones(db, clock, rule) == ["0770000001", "0770000002", "0770000003", "0770000004", "0770000005"]

    def test_unit_leaders(self, db, clock, people):
        rule = make_rule(db, applicable_to=ApplicableTo.unit_leaders)
        assert self._phones(db, clock, rule) == ["0770000003"]

    def test_new_members_within_window(self, db, clock, people):
        rule = make_rule(db, applicable_to=ApplicableTo.new_members)
        assert self._phones(db, clock, rule) == ["0770000005"]

    def test_active_members(self, db, clock, people):
        rule = make_rule(db, applicable_to=ApplicableTo.active_members)
        assert self._phones(db, clock, rule) == ["0770000001", "0770000003", "0770000004", "0770000005"]

    def test_specific_units_uses_active_assignments(self, db, clock, people):
        rule = make_rule(db, applicable_to=ApplicableTo.specific_units)
        fee_scheduling.assign_fee_rule_to_units(db, rule.id, [people["north"].id, people["south"].id], clock=clock)
        assignment = (
            db.query(FeeRuleUnitAssignment)
            .filter(FeeRuleUnitAssignment.unit_id == people["south"].id)
            .one()
        )
        assignment.is_active = False
        db.commit()
        assert self._phones(db, clock, rule) == ["0770000001", "0770000005"]


class TestApplyFeeRule:
    def test_creates_one_pending_application_per_member(self, db, clock):
        rule = make_rule(db, amount="50", frequency=FeeFrequency.monthly)
        for phone in ("0770000001", "0770000002", "0770000003"):
            make_user(db, phone)

        result = fee_scheduling.apply_fee_rule(db, rule.id, actor="secretary", clock=clock)

        assert (result.eligible_count, result.created_count, result.skipped_count) == (3, 3, 0)
        applications = _applications(db, result.rule_id)
        assert len(applications) == 3
        for application in applications:
            assert application.amount == Decimal("50")
            assert application.status == FeeApplicationStatus.pending
            assert application.due_date == date(2026, 11, 19)
            assert application.extra_data["base_amount"] == "50.00"
            assert application.extra_data["unit_override"] is None
            assert application.extra_data["applied_by"] == "secretary"
        assert len(_activity(db, activity_log.FEE_RULE_APPLIED)) == 1

    def test_unit_override_amount(self, db, clock):
        rule = make_rule(db, amount="50")
        home, other = make_unit(db, "U1"), make_unit(db, "U2")
        insider = make_user(db, "0770000001", unit=home)
        outsider = make_user(db, "0770000002", unit=other)
        insider_id, outsider_id = insider.id, outsider.id
        fee_scheduling.assign_fee_rule_to_units(db, rule.id, [home.id], {home.id: Decimal("30")}, clock=clock)

        fee_scheduling.apply_fee_rule(db, rule.id, clock=clock)

        amounts = {a.user_id: a.amount for a in _applications(db, rule.id)}
        assert amounts == {insider_id: Decimal("30"), outsider_id: Decimal("50")}

    def test_second_apply_creates_nothing(self, db, clock):
        rule = make_rule(db)
        make_user(db, "0770000001")
        make_user(db, "0770000002")

        first = fee_scheduling.apply_fee_rule(db, rule.id, clock=clock)
        second = fee_scheduling.apply_fee_rule(db, rule.id, clock=clock)

        assert first.created_count == 2
        assert (second.created_count, second.skipped_count) == (0, 2)
        assert len(_applications(db, rule.id)) == 2

    def test_overdue_application_still_blocks(self, db, clock):
        rule = make_rule(db)
        make_application(db, rule, make_user(db, "0770000001"), status=FeeApplicationStatus.overdue)
        result = fee_scheduling.apply_fee_rule(db, rule.id, clock=clock)
        assert (result.created_count, result.skipped_count) == (0, 1)

    def test_paid_application_allows_new_bill(self, db, clock):
        rule = make_rule(db)
        make_application(db, rule, make_user(db, "0770000001"), status=FeeApplicationStatus.paid)
        result = fee_scheduling.apply_fee_rule(db, rule.id, clock=clock)
        assert result.created_count == 1

    @pytest.mark.parametrize(
        "status,effective_date",
        [
            (FeeRuleStatus.draft, TODAY),
            (FeeRuleStatus.inactive, TODAY),
            (FeeRuleStatus.scheduled, TOMORROW),
            (FeeRuleStatus.active, TOMORROW),
        ],
    )
    def test_requires_active_and_effective_rule(self, db, clock, status, effective_date):
        rule = make_rule(db, status=status, effective_date=effective_date)
        make_user(db, "0770000001")
        with pytest.raises(PreconditionFailed):
            fee_scheduling.apply_fee_rule(db, rule.id, clock=clock)
        assert _applications(db, rule.id) == []

    def test_concurrent_insert_is_counted_as_skipped(self, db, clock, monkeypatch):
        rule = make_rule(db)
        racer = make_user(db, "0770000001")
        make_user(db, "0770000002")
        rule_id, racer_id = rule.id, racer.id
        real_due_date = fee_scheduling.compute_due_date

        # Another apply wins the race for one user after the open-application check ran
        def racing_due_date(*args, **kwargs):
            db.add(
                FeeApplication(
                    id=str(uuid.uuid4()),
                    fee_rule_id=rule_id,
                    user_id=racer_id,
                    amount=Decimal("50"),
                    due_date=TODAY,
                    status=FeeApplicationStatus.pending,
                )
            )
            db.flush()
            return real_due_date(*args, **kwargs)

        monkeypatch.setattr(fee_scheduling, "compute_due_date", racing_due_date)
        result = fee_scheduling.apply_fee_rule(db, rule_id, clock=clock)

        assert (result.created_count, result.skipped_count) == (1, 1)
        open_for_racer = [
            a for a in _applications(db, rule_id)
            if a.user_id == racer_id and a.status == FeeApplicationStatus.pending
        ]
        assert len(open_for_racer) == 1

    def test_other_integrity_errors_abort_the_apply(self, db, clock, monkeypatch):
        rule_id = make_rule(db).id
        make_user(db, "0770000001")
        make_user(db, "0770000002")

        # amount is NOT NULL, so every insert fails on a different constraint
        monkeypatch.setattr(fee_scheduling, "resolve_fee_amount", lambda base, assignment: None)
        with pytest.raises(PersistenceError):
            fee_scheduling.apply_fee_rule(db, rule_id, clock=clock)

        assert _applications(db, rule_id) == []


class TestOpenApplicationConstraint:
    def test_second_open_application_is_rejected(self, db):
        rule = make_rule(db)
        user = make_user(db, "0770000001")
        make_application(db, rule, user)
        with pytest.raises(IntegrityError) as exc_info:
            make_application(db, rule, user, status=FeeApplicationStatus.overdue)
        assert fee_scheduling._is_open_application_conflict(exc_info.value)
        db.rollback()

    def test_closed_applications_do_not_count(self, db):
        rule = make_rule(db)
        user = make_user(db, "0770000001")
        make_application(db, rule, user, status=FeeApplicationStatus.paid)
        make_application(db, rule, user, status=FeeApplicationStatus.cancelled)
        make_application(db, rule, user)
        assert len(_applications(db, rule.id)) == 3

    def test_conflict_is_recognised_by_constraint_name(self):
        class Diag:
            constraint_name = "uq_fee_applications_open_rule_user"

        class DriverError(Exception):
            diag = Diag()

        conflict = IntegrityError("INSERT INTO fee_applications ...", {}, DriverError("duplicate key value"))
        assert fee_scheduling._is_open_application_conflict(conflict)

        other = IntegrityError("INSERT INTO fee_applications ...", {}, Exception("FOREIGN KEY constraint failed"))
        assert not fee_scheduling._is_open_application_conflict(other)


class TestApplyActiveFeeRules:
    def test_applies_every_effective_active_rule(self, db, clock):
        make_user(db, "0770000001")
        make_rule(db, name="Land fee")
        make_rule(db, name="Storage fee", type=FeeType.storage)
        make_rule(db, name="Next season", effective_date=TOMORROW, status=FeeRuleStatus.scheduled)
        make_rule(db, name="Draft", status=FeeRuleStatus.draft)

        outcome = fee_scheduling.apply_active_fee_rules(db, clock=clock)

        assert outcome["applied_count"] == 2
        assert sorted(r.rule_name for r in outcome["results"]) == ["Land fee", "Storage fee"]
        assert outcome["errors"] == []


class TestAssignToUnits:
    def test_reassigning_updates_in_place(self, db, clock):
        rule = make_rule(db)
        unit = make_unit(db, "U1")
        rule_id, unit_id = rule.id, unit.id

        count = fee_scheduling.assign_fee_rule_to_units(db, rule_id, [unit_id], {unit_id: Decimal("30")}, clock=clock)
        assert count == 1
        fee_scheduling.assign_fee_rule_to_units(db, rule_id, [unit_id], {unit_id: Decimal("20")}, clock=clock)

        [assignment] = db.query(FeeRuleUnitAssignment).filter(FeeRuleUnitAssignment.fee_rule_id == rule_id).all()
        assert assignment.custom_amount == Decimal("20")
        assert assignment.is_active is True

    def test_missing_custom_amount_falls_back_to_base(self, db, clock):
        rule = make_rule(db)
        unit = make_unit(db, "U1")
        rule_id, unit_id = rule.id, unit.id
        fee_scheduling.assign_fee_rule_to_units(db, rule_id, [unit_id], {unit_id: Decimal("30")}, clock=clock)
        fee_scheduling.assign_fee_rule_to_units(db, rule_id, [unit_id], clock=clock)
        [assignment] = db.query(FeeRuleUnitAssignment).filter(FeeRuleUnitAssignment.fee_rule_id == rule_id).all()
        assert assignment.custom_amount is None

    def test_unknown_unit_is_rejected(self, db, clock):
        rule = make_rule(db)
        with pytest.raises(ValidationFailed) as exc_info:
            fee_scheduling.assign_fee_rule_to_units(db, rule.id, ["no-such-unit"], clock=clock)
        assert exc_info.value.errors[0]["field"] == "unit_ids.no-such-unit"
        assert db.query(FeeRuleUnitAssignment).count() == 0

    def test_negative_amount_is_rejected(self, db, clock):
        rule = make_rule(db)
        unit = make_unit(db, "U1")
        with pytest.raises(ValidationFailed):
            fee_scheduling.assign_fee_rule_to_units(db, rule.id, [unit.id], {unit.id: Decimal("-1")}, clock=clock)


class TestApplicationTransitions:
    def test_mark_overdue(self, db, clock):
        rule = make_rule(db)
        late = make_application(db, rule, make_user(db, "0770000001"), due_date=YESTERDAY)
        on_time = make_application(db, rule, make_user(db, "0770000002"), due_date=TODAY)
        settled = make_application(
            db, rule, make_user(db, "0770000003"), due_date=YESTERDAY, status=FeeApplicationStatus.paid
        )
        late_id, on_time_id, settled_id = late.id, on_time.id, settled.id

        assert fee_scheduling.mark_overdue_applications(db, clock=clock) == 1
        db.expire_all()
        assert db.get(FeeApplication, late_id).status == FeeApplicationStatus.overdue
        assert db.get(FeeApplication, on_time_id).status == FeeApplicationStatus.pending
        assert db.get(FeeApplication, settled_id).status == FeeApplicationStatus.paid
        assert fee_scheduling.mark_overdue_applications(db, clock=clock) == 0

    def test_cancel_open_application(self, db, clock):
        rule = make_rule(db)
        application = make_application(db, rule, make_user(db, "0770000001"))
        cancelled = fee_scheduling.cancel_fee_application(db, application.id, reason="Left the cooperative", clock=clock)
        assert cancelled.status == FeeApplicationStatus.cancelled
        assert cancelled.notes == "Left the cooperative"

    def test_cancel_paid_application_is_refused(self, db, clock):
        rule = make_rule(db)
        application = make_application(db, rule, make_user(db, "0770000001"), status=FeeApplicationStatus.paid)
        with pytest.raises(PreconditionFailed):
            fee_scheduling.cancel_fee_application(db, application.id, clock=clock)

    def test_cancel_unknown_application(self, db, clock):
        with pytest.raises(NotFound):
            fee_scheduling.cancel_fee_application(db, "missing", clock=clock)
