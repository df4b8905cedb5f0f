"""
Unit tests for subscription service.
Tests activation, expiry sweeps, renewal reminders and payment reconciliation.
"""
import pytest
from datetime import date, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.models.user import User
from app.db.models.plan import Plan
from app.db.models.payment import Payment
from app.db.models.subscription import Subscription
from app.db.models.activity_log import ActivityLog
from app.core.errors import NotFoundError
from app.services.subscription_service import (
    compute_end_date,
    find_plan_for_payment,
    activate,
    expire_subscription,
    expire_due,
    send_renewal_reminders,
    reconcile_paid_payments,
)


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

TODAY = date(2026, 10, 19)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def test_user(db):
    user = User(id="u1", name="Test Subscriber", email="subscriber@example.com")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def monthly_plan(db):
    plan = Plan(id="abc", name="Home 10Mbps", price_kes=1000, speed_limit_mbps=10, validity_days=30)
    db.add(plan)
    db.commit()
    return plan


def add_subscription(db, end_date, status="active", user_id="u1", plan_id="abc"):
    sub = Subscription(
        user_id=user_id,
        plan_id=plan_id,
        start_date=end_date - timedelta(days=30),
        end_date=end_date,
        status=status,
    )
    db.add(sub)
    db.commit()
    return sub


def test_compute_end_date():
    assert compute_end_date(date(2026, 1, 31), 30) == date(2026, 3, 2)


def test_activate_creates_subscription_window(db, test_user, monthly_plan):
    result = activate(db, "u1", "abc", today=TODAY)

    assert result["created"] is True
    assert result["start_date"] == TODAY
    assert result["end_date"] == TODAY + timedelta(days=30)

    sub = db.query(Subscription).filter(Subscription.id == result["subscription_id"]).one()
    assert sub.status == "active"
    assert (sub.end_date - sub.start_date).days == monthly_plan.validity_days
    assert sub.auto_renew is False
    assert db.query(ActivityLog).filter(ActivityLog.action == "subscription_created").count() == 1


def test_activate_unknown_plan_raises(db, test_user):
    with pytest.raises(NotFoundError):
        activate(db, "u1", "missing", today=TODAY)


def test_activate_is_idempotent_per_payment(db, test_user, monthly_plan):
    payment = Payment(user_id="u1", plan_id="abc", amount_kes=1000, status="success", checkout_request_id="ws_1")
    db.add(payment)
    db.commit()

    first = activate(db, "u1", "abc", payment.id, today=TODAY)
    second = activate(db, "u1", "abc", payment.id, today=TODAY + timedelta(days=1))

    assert first["created"] is True
    assert second["created"] is False
    assert second["subscription_id"] == first["subscription_id"]
    assert second["end_date"] == first["end_date"]
    assert db.query(Subscription).count() == 1


def test_find_plan_prefers_recorded_plan(db, monthly_plan):
    other = Plan(id="other", name="Promo", price_kes=500, speed_limit_mbps=5, validity_days=7)
    db.add(other)
    db.commit()

    payment = Payment(user_id="u1", plan_id="abc", amount_kes=1000, status="success")
    assert find_plan_for_payment(db, payment, confirmed_amount=500).id == "abc"


def test_find_plan_falls_back_to_price_match(db, monthly_plan):
    retired = Plan(id="old", name="Retired", price_kes=1000, speed_limit_mbps=5, validity_days=30, is_active=False)
    db.add(retired)
    db.commit()

    payment = Payment(user_id="u1", amount_kes=1000, status="success")
    assert find_plan_for_payment(db, payment).id == "abc"
    assert find_plan_for_payment(db, payment, confirmed_amount=42) is None


def test_expire_due_expires_only_past_end_dates(db, test_user, monthly_plan):
    overdue = add_subscription(db, TODAY - timedelta(days=1))
    ends_today = add_subscription(db, TODAY)
    future = add_subscription(db, TODAY + timedelta(days=5))
    already = add_subscription(db, TODAY - timedelta(days=10), status="expired")

    result = expire_due(db, today=TODAY, grace_period_days=0)

    assert result == {"expired_count": 1}
    db.expire_all()
    assert db.get(Subscription, overdue.id).status == "expired"
    assert db.get(Subscription, ends_today.id).status == "active"
    assert db.get(Subscription, future.id).status == "active"
    assert db.get(Subscription, already.id).status == "expired"
    assert db.query(ActivityLog).filter(ActivityLog.action == "subscription_expired").count() == 1


def test_expire_due_twice_same_day_is_noop(db, test_user, monthly_plan):
    add_subscription(db, TODAY - timedelta(days=3))
    add_subscription(db, TODAY - timedelta(days=2))

    assert expire_due(db, today=TODAY, grace_period_days=0) == {"expired_count": 2}
    assert expire_due(db, today=TODAY, grace_period_days=0) == {"expired_count": 0}


def test_expire_due_honours_grace_period(db, test_user, monthly_plan):
    add_subscription(db, TODAY - timedelta(days=2))

    assert expire_due(db, today=TODAY, grace_period_days=3) == {"expired_count": 0}
    assert expire_due(db, today=TODAY, grace_period_days=1) == {"expired_count": 1}


def test_renewal_reminders_target_exact_day(db, test_user, monthly_plan):
    add_subscription(db, TODAY + timedelta(days=3))
    add_subscription(db, TODAY + timedelta(days=2))
    add_subscription(db, TODAY + timedelta(days=3), status="expired")

    result = send_renewal_reminders(db, days_ahead=3, today=TODAY)

    assert result == {"reminders_sent": 1}
    reminder = db.query(ActivityLog).filter(ActivityLog.action == "renewal_reminder_sent").one()
    assert reminder.user_id == "u1"
    assert reminder.details["expiry_date"] == (TODAY + timedelta(days=3)).isoformat()
    assert reminder.details["plan_name"] == "Home 10Mbps"


def test_reconcile_activates_paid_payments_without_subscription(db, test_user, monthly_plan):
    orphan = Payment(user_id="u1", plan_id="abc", amount_kes=1000, status="success", checkout_request_id="ws_orphan")
    covered = Payment(user_id="u1", plan_id="abc", amount_kes=1000, status="success", checkout_request_id="ws_done")
    pending = Payment(user_id="u1", plan_id="abc", amount_kes=1000, status="pending", checkout_request_id="ws_wait")
    unmatched = Payment(user_id="u1", amount_kes=333, status="success", checkout_request_id="ws_nomatch")
    db.add_all([orphan, covered, pending, unmatched])
    db.commit()
    activate(db, "u1", "abc", covered.id, today=TODAY)

    result = reconcile_paid_payments(db, today=TODAY)

    assert result == {"activated_count": 1}
    sub = db.query(Subscription).filter(Subscription.payment_id == orphan.id).one()
    assert sub.start_date == TODAY
    assert db.query(Subscription).filter(Subscription.payment_id == pending.id).count() == 0
    assert db.query(Subscription).filter(Subscription.payment_id == unmatched.id).count() == 0

    # Nothing left to reconcile
    assert reconcile_paid_payments(db, today=TODAY) == {"activated_count": 0}


def test_overlapping_expiry_counts_and_audits_once(db, test_user, monthly_plan):
    """Two sweeps holding the same selected row: only the one that changes it reports it."""
    sub = add_subscription(db, TODAY - timedelta(days=1))

    assert expire_subscription(db, sub) is True
    assert expire_subscription(db, sub) is False
    db.commit()

    db.expire_all()
    assert db.get(Subscription, sub.id).status == "expired"
    assert db.query(ActivityLog).filter(ActivityLog.action == "subscription_expired").count() == 1
