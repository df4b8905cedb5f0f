"""
Unit tests for the payment service.
Tests STK push initiation, status reads, and the stale pending reaper.
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import MagicMock
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.models.user import User
from app.db.models.plan import Plan
from app.db.models.payment import Payment
from app.db.models.activity_log import ActivityLog
from app.core.errors import NotFoundError, PersistenceError, ProviderError, ValidationError
from app.services.payment_service import (
    normalize_amount,
    plan_id_from_reference,
    initiate_stk_push,
    get_payment_status,
    expire_stale_pending,
)


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


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
    user = User(id="u1", name="Test Subscriber", email="subscriber@example.com", phone="0712345678")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def test_plan(db):
    plan = Plan(id="abc", name="Home 10Mbps", price_kes=1000, speed_limit_mbps=10, validity_days=30)
    db.add(plan)
    db.commit()
    return plan


@pytest.fixture
def mpesa_client():
    """Daraja client stub returning an accepted STK push."""
    client = MagicMock()
    client.stk_push.return_value = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": "ws_CO_191220191020363925",
        "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing",
        "CustomerMessage": "Success. Request accepted for processing",
    }
    return client


def test_normalize_amount_rounds_to_whole_shillings():
    assert normalize_amount(999.6) == 1000
    assert normalize_amount("250") == 250


@pytest.mark.parametrize("amount", [None, 0, -5, "abc", 0.2])
def test_normalize_amount_rejects_invalid(amount):
    with pytest.raises(ValidationError):
        normalize_amount(amount)


def test_plan_id_from_reference():
    assert plan_id_from_reference("PLAN_abc") == "abc"
    assert plan_id_from_reference("INV-42") is None
    assert plan_id_from_reference("PLAN_") is None
    assert plan_id_from_reference(None) is None


def test_initiate_creates_pending_payment(db, test_user, test_plan, mpesa_client):
    """Amount 1000 from 0712345678 for PLAN_abc produces one pending row."""
    result = initiate_stk_push(
        db,
        user_id="u1",
        phone="0712345678",
        amount=1000,
        account_reference="PLAN_abc",
        client=mpesa_client,
    )

    assert result["checkout_request_id"] == "ws_CO_191220191020363925"
    assert result["merchant_request_id"] == "29115-34620561-1"

    mpesa_client.stk_push.assert_called_once()
    call_kwargs = mpesa_client.stk_push.call_args.kwargs
    assert call_kwargs["phone"] == "254712345678"
    assert call_kwargs["amount"] == 1000
    assert call_kwargs["account_reference"] == "PLAN_abc"

    payments = db.query(Payment).all()
    assert len(payments) == 1
    payment = payments[0]
    assert payment.id == result["payment_id"]
    assert payment.status == "pending"
    assert payment.method == "MPESA"
    assert payment.amount_kes == 1000
    assert payment.phone_number == "254712345678"
    assert payment.plan_id == "abc"
    assert payment.checkout_request_id == "ws_CO_191220191020363925"
    assert payment.paid_at is None

    audit = db.query(ActivityLog).filter(ActivityLog.action == "mpesa_stk_push_initiated").one()
    assert audit.user_id == "u1"
    assert audit.details["payment_id"] == payment.id


def test_initiate_with_plan_id_uses_plan_price(db, test_user, test_plan, mpesa_client):
    initiate_stk_push(db, user_id="u1", phone="+254712345678", amount=5, plan_id="abc", client=mpesa_client)

    call_kwargs = mpesa_client.stk_push.call_args.kwargs
    assert call_kwargs["amount"] == 1000
    assert call_kwargs["account_reference"] == "PLAN_abc"


def test_initiate_unknown_plan_raises_not_found(db, test_user, mpesa_client):
    with pytest.raises(NotFoundError):
        initiate_stk_push(db, user_id="u1", phone="0712345678", plan_id="missing", client=mpesa_client)
    mpesa_client.stk_push.assert_not_called()


def test_initiate_invalid_phone_persists_nothing(db, test_user, mpesa_client):
    with pytest.raises(ValidationError):
        initiate_stk_push(db, user_id="u1", phone="12345", amount=100, account_reference="X", client=mpesa_client)

    mpesa_client.stk_push.assert_not_called()
    assert db.query(Payment).count() == 0


def test_initiate_missing_reference_is_rejected(db, test_user, mpesa_client):
    with pytest.raises(ValidationError):
        initiate_stk_push(db, user_id="u1", phone="0712345678", amount=100, client=mpesa_client)


def test_provider_rejection_persists_nothing(db, test_user, mpesa_client):
    """A non-zero ResponseCode must not leave a payment row behind."""
    mpesa_client.stk_push.side_effect = ProviderError("STK Push rejected", response_code="1")

    with pytest.raises(ProviderError):
        initiate_stk_push(db, user_id="u1", phone="0712345678", amount=100, account_reference="X", client=mpesa_client)

    assert db.query(Payment).count() == 0
    assert db.query(ActivityLog).count() == 0


def test_get_payment_status(db, test_user):
    payment = Payment(user_id="u1", amount_kes=100, status="pending", checkout_request_id="ws_1")
    db.add(payment)
    db.commit()

    assert get_payment_status(db, payment.id) == "pending"
    assert get_payment_status(db, payment.id, user_id="u1") == "pending"

    with pytest.raises(NotFoundError):
        get_payment_status(db, payment.id, user_id="someone-else")
    with pytest.raises(NotFoundError):
        get_payment_status(db, "missing")


def test_expire_stale_pending_only_touches_old_pending_rows(db, test_user):
    now = datetime(2026, 10, 19, 12, 0, 0)
    stale = Payment(user_id="u1", amount_kes=100, status="pending", checkout_request_id="ws_old",
                    created_at=now - timedelta(hours=25))
    fresh = Payment(user_id="u1", amount_kes=100, status="pending", checkout_request_id="ws_new",
                    created_at=now - timedelta(hours=1))
    settled = Payment(user_id="u1", amount_kes=100, status="success", checkout_request_id="ws_paid",
                      created_at=now - timedelta(hours=48))
    db.add_all([stale, fresh, settled])
    db.commit()

    assert expire_stale_pending(db, max_age_hours=24, now=now) == 1

    db.expire_all()
    assert db.query(Payment).filter(Payment.checkout_request_id == "ws_old").one().status == "failed"
    assert db.query(Payment).filter(Payment.checkout_request_id == "ws_new").one().status == "pending"
    assert db.query(Payment).filter(Payment.checkout_request_id == "ws_paid").one().status == "success"
    assert db.query(ActivityLog).filter(ActivityLog.action == "mpesa_payment_timed_out").count() == 1

    # Second run finds nothing
    assert expire_stale_pending(db, max_age_hours=24, now=now) == 0


# Separate engine with foreign keys enforced, as Postgres does
fk_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(fk_engine, "connect")
def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


FKSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=fk_engine)


@pytest.fixture
def fk_db():
    Base.metadata.create_all(bind=fk_engine)
    db = FKSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=fk_engine)


def test_unknown_user_is_rejected_before_push(fk_db, mpesa_client):
    """A token subject without a users row must not ring the handset."""
    with pytest.raises(NotFoundError):
        initiate_stk_push(fk_db, user_id="ext-user", phone="0712345678", amount=100,
                          account_reference="X", client=mpesa_client)

    mpesa_client.stk_push.assert_not_called()
    assert fk_db.query(Payment).count() == 0


def test_save_failure_after_accepted_push_raises_persistence_error(fk_db, mpesa_client):
    fk_db.add(User(id="u1", name="Test Subscriber"))
    fk_db.commit()
    # Same CheckoutRequestID already on file, so the insert violates the unique index
    fk_db.add(Payment(user_id="u1", amount_kes=50, status="failed", checkout_request_id="ws_CO_191220191020363925"))
    fk_db.commit()

    with pytest.raises(PersistenceError):
        initiate_stk_push(fk_db, user_id="u1", phone="0712345678", amount=100,
                          account_reference="X", client=mpesa_client)

    mpesa_client.stk_push.assert_called_once()
    assert fk_db.query(Payment).count() == 1
    assert fk_db.query(ActivityLog).count() == 0


def test_initiate_succeeds_with_foreign_keys_enforced(fk_db, mpesa_client):
    fk_db.add(User(id="u1", name="Test Subscriber"))
    fk_db.commit()

    result = initiate_stk_push(fk_db, user_id="u1", phone="0712345678", amount=100,
                               account_reference="X", client=mpesa_client)

    assert fk_db.query(Payment).filter(Payment.id == result["payment_id"]).one().status == "pending"


def test_response_without_request_ids_persists_nothing(db, test_user, mpesa_client):
    mpesa_client.stk_push.return_value = {"ResponseCode": "0", "MerchantRequestID": "29115-34620561-1"}

    with pytest.raises(ProviderError):
        initiate_stk_push(db, user_id="u1", phone="0712345678", amount=100, account_reference="X", client=mpesa_client)

    assert db.query(Payment).count() == 0


def test_throttle_runs_only_for_valid_requests(db, test_user, mpesa_client):
    throttle = MagicMock()

    with pytest.raises(ValidationError):
        initiate_stk_push(db, user_id="u1", phone="12345", amount=100, account_reference="X",
                          client=mpesa_client, throttle=throttle)
    with pytest.raises(NotFoundError):
        initiate_stk_push(db, user_id="u1", phone="0712345678", plan_id="missing",
                          client=mpesa_client, throttle=throttle)
    throttle.assert_not_called()

    initiate_stk_push(db, user_id="u1", phone="0712345678", amount=100, account_reference="X",
                      client=mpesa_client, throttle=throttle)
    throttle.assert_called_once_with("u1", "254712345678")


def test_throttle_refusal_skips_provider(db, test_user, mpesa_client):
    throttle = MagicMock(side_effect=RuntimeError("too many"))

    with pytest.raises(RuntimeError):
        initiate_stk_push(db, user_id="u1", phone="0712345678", amount=100, account_reference="X",
                          client=mpesa_client, throttle=throttle)

    mpesa_client.stk_push.assert_not_called()
