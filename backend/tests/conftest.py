import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from koabiga.core.clock import FixedClock
from koabiga.core.database import make_engine
from koabiga.core.deps import get_clock, get_db
from koabiga.core.security import create_access_token, get_password_hash
from koabiga.main import app
from koabiga.models import Base
from koabiga.models.admin_user import AdminUser
from koabiga.models.fee_application import FeeApplication, FeeApplicationStatus
from koabiga.models.fee_rule import ApplicableTo, FeeFrequency, FeeRule, FeeRuleStatus, FeeType
from koabiga.models.unit import Unit
from koabiga.models.user import User, UserRole, UserStatus

TODAY = date(2026, 10, 19)


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """One session shared by the test body, the API client and the CLI."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest.fixture
def client(db, clock):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def admin(db):
    a = AdminUser(
        id=str(uuid.uuid4()),
        username="secretary",
        name="Cooperative Secretary",
        hashed_password=get_password_hash("s3cret-pass"),
        is_active=True,
    )
    db.add(a)
    db.commit()
    db.refresh(a)
    return a


@pytest.fixture
def auth_headers(admin):
    token = create_access_token(subject=admin.id, role="admin")
    return {"Authorization": f"Bearer {token}"}


def make_unit(db, code, name=None):
    unit = Unit(id=str(uuid.uuid4()), name=name or f"Unit {code}", code=code)
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return unit


def make_user(
    db,
    phone,
    role=UserRole.member,
    status=UserStatus.active,
    unit=None,
    created_days_ago=365,
):
    user = User(
        id=str(uuid.uuid4()),
        christian_name="Member",
        family_name=phone[-4:],
        phone=phone,
        role=role,
        status=status,
        unit_id=unit.id if unit else None,
        created_at=datetime.combine(TODAY, datetime.min.time(), tzinfo=timezone.utc)
        - timedelta(days=created_days_ago),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_rule(
    db,
    name="Land fee",
    amount="50.00",
    status=FeeRuleStatus.active,
    effective_date=TODAY,
    applicable_to=ApplicableTo.all_members,
    frequency=FeeFrequency.monthly,
    type=FeeType.land,
):
    rule = FeeRule(
        id=str(uuid.uuid4()),
        name=name,
        type=type,
        amount=Decimal(amount),
        frequency=frequency,
        unit_label="per hectare",
        status=status,
        applicable_to=applicable_to,
        description=f"{name} for the season",
        effective_date=effective_date,
        created_by="test",
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def make_application(db, rule, user, status=FeeApplicationStatus.pending, due_date=TODAY, amount=None):
    application = FeeApplication(
        id=str(uuid.uuid4()),
        fee_rule_id=rule.id,
        user_id=user.id,
        unit_id=user.unit_id,
        amount=Decimal(amount) if amount is not None else rule.amount,
        due_date=due_date,
        status=status,
    )
    db.add(application)
    db.commit()
    db.refresh(application)
    return application
