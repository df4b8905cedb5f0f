"""
Subscription service: activation after payment and scheduled sweeps.

Activation is idempotent per payment (unique subscriptions.payment_id), so
the callback handler and the reconciliation sweep can both drive it safely.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import config
from app.core.errors import NotFoundError
from app.db.models.payment import Payment, PaymentStatus
from app.db.models.plan import Plan
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.services.audit_service import log_activity

logger = logging.getLogger(__name__)


def compute_end_date(start_date: date, validity_days: int) -> date:
    """Subscription window end: start + the plan's validity period."""
    return start_date + timedelta(days=validity_days)


def find_plan_for_payment(db: Session, payment: Payment, confirmed_amount: Optional[int] = None) -> Optional[Plan]:
    """
    Resolve the plan a payment bought.

    Uses the plan recorded at initiation; falls back to the active plan
    priced at the confirmed (or requested) amount.
    """
    if payment.plan_id:
        plan = db.query(Plan).filter(Plan.id == payment.plan_id).first()
        if plan:
            return plan

    amount = confirmed_amount or payment.amount_kes
    return db.query(Plan).filter(
        Plan.price_kes == amount,
        Plan.is_active.is_(True),
    ).order_by(Plan.created_at).first()


def activate(
    db: Session,
    user_id: str,
    plan_id: str,
    payment_id: Optional[str] = None,
    today: Optional[date] = None,
) -> Dict:
    """
    Create an active subscription for a plan.

    Args:
        db: Database session
        user_id: Subscriber user id
        plan_id: Plan id
        payment_id: Payment that paid for it (at most one subscription per payment)
        today: Start date override (defaults to today)

    Returns:
        Dictionary with subscription_id, start_date, end_date and created
        (False when an existing subscription for the payment was returned)

    Raises:
        NotFoundError: If the plan does not exist
    """
    plan = db.query(Plan).filter(Plan.id == plan_id).first()
    if not plan:
        raise NotFoundError(f"Plan not found: {plan_id}")

    if payment_id:
        existing = db.query(Subscription).filter(Subscription.payment_id == payment_id).first()
        if existing:
            logger.info(f"Subscription already exists for payment_id={payment_id}: {existing.id}")
            return {
                "subscription_id": existing.id,
                "start_date": existing.start_date,
                "end_date": existing.end_date,
                "created": False,
            }

    start_date = today or date.today()
    end_date = compute_end_date(start_date, plan.validity_days)

    subscription = Subscription(
        user_id=user_id,
        plan_id=plan.id,
        payment_id=payment_id,
        start_date=start_date,
        end_date=end_date,
        status=SubscriptionStatus.ACTIVE.value,
        auto_renew=False,
    )
    db.add(subscription)
    try:
        db.flush()
    except IntegrityError:
        # Lost a race with another activation for the same payment
        db.rollback()
        existing = db.query(Subscription).filter(Subscription.payment_id == payment_id).first()
        if not existing:
            raise
        logger.info(f"Concurrent activation for payment_id={payment_id}, using {existing.id}")
        return {
            "subscription_id": existing.id,
            "start_date": existing.start_date,
            "end_date": existing.end_date,
            "created": False,
        }

    log_activity(
        db,
        user_id=user_id,
        action="subscription_created",
        details={
            "subscription_id": subscription.id,
            "plan_name": plan.name,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "payment_id": payment_id,
        },
    )
    db.commit()
    db.refresh(subscription)

    # Router provisioning (profile Plan_<speed>M) is handled outside this service
    logger.info(
        f"Subscription created: subscription_id={subscription.id}, user_id={user_id}, "
        f"plan={plan.name}, window={start_date}..{end_date}"
    )

    return {
        "subscription_id": subscription.id,
        "start_date": start_date,
        "end_date": end_date,
        "created": True,
    }


def expire_subscription(db: Session, sub: Subscription, grace_period_days: int = 0, now: Optional[datetime] = None) -> bool:
    """
    Move one subscription from active to expired and audit it.

    The update is conditional on the row still being active, so when two
    sweeps overlap only the one that changes the row counts and audits it.
    The caller commits.

    Returns:
        True if this call expired the subscription
    """
    updated = db.query(Subscription).filter(
        Subscription.id == sub.id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
    ).update(
        {
            Subscription.status: SubscriptionStatus.EXPIRED.value,
            Subscription.updated_at: now or datetime.utcnow(),
        },
        synchronize_session=False,
    )
    if not updated:
        logger.debug(f"Subscription already expired elsewhere: subscription_id={sub.id}")
        return False

    log_activity(
        db,
        user_id=sub.user_id,
        action="subscription_expired",
        details={
            "subscription_id": sub.id,
            "plan_name": sub.plan.name if sub.plan else "Unknown Plan",
            "end_date": sub.end_date.isoformat(),
            "grace_period_days": grace_period_days,
        },
    )
    return True


def expire_due(
    db: Session,
    today: Optional[date] = None,
    grace_period_days: Optional[int] = None,
) -> Dict[str, int]:
    """
    Expire active subscriptions whose end date has passed.

    A subscription is due when ``end_date < today - grace_period_days``.
    Running twice on the same day expires nothing the second time.

    Returns:
        Dictionary with expired_count (rows this sweep actually changed)
    """
    today = today or date.today()
    if grace_period_days is None:
        grace_period_days = config.SUBSCRIPTION_GRACE_PERIOD_DAYS
    cutoff = today - timedelta(days=grace_period_days)

    due = db.query(Subscription).filter(
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.end_date < cutoff,
    ).all()

    if not due:
        logger.info("No expired subscriptions found")
        return {"expired_count": 0}

    now = datetime.utcnow()
    expired = sum(1 for sub in due if expire_subscription(db, sub, grace_period_days, now))
    db.commit()

    logger.info(f"Expired {expired} of {len(due)} due subscriptions")
    return {"expired_count": expired}


def send_renewal_reminders(
    db: Session,
    days_ahead: Optional[int] = None,
    today: Optional[date] = None,
) -> Dict[str, int]:
    """
    Record renewal reminders for subscriptions ending in exactly ``days_ahead`` days.

    Delivery (SMS/email) reads these audit entries; nothing is sent from here.
    """
    if days_ahead is None:
        days_ahead = config.RENEWAL_REMINDER_DAYS
    today = today or date.today()
    target = today + timedelta(days=days_ahead)

    expiring = db.query(Subscription).filter(
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.end_date == target,
    ).all()

    for sub in expiring:
        log_activity(
            db,
            user_id=sub.user_id,
            action="renewal_reminder_sent",
            details={
                "subscription_id": sub.id,
                "expiry_date": sub.end_date.isoformat(),
                "plan_name": sub.plan.name if sub.plan else None,
                "auto_renew": sub.auto_renew,
            },
        )
    db.commit()

    if expiring:
        logger.info(f"Sent renewal reminders for {len(expiring)} subscriptions")
    return {"reminders_sent": len(expiring)}


def reconcile_paid_payments(db: Session, today: Optional[date] = None) -> Dict[str, int]:
    """
    Activate subscriptions for successful payments that have none.

    Covers a crash between settling a payment and activating its
    subscription. Payments whose plan cannot be resolved are logged and
    left for an operator.
    """
    orphaned = db.query(Payment).outerjoin(
        Subscription, Subscription.payment_id == Payment.id
    ).filter(
        Payment.status == PaymentStatus.SUCCESS.value,
        Subscription.id.is_(None),
    ).all()

    activated = 0
    for payment in orphaned:
        plan = find_plan_for_payment(db, payment)
        if not plan:
            logger.error(
                f"Cannot reconcile payment_id={payment.id}: no plan matches amount={payment.amount_kes}"
            )
            continue
        result = activate(db, payment.user_id, plan.id, payment.id, today=today)
        if result["created"]:
            activated += 1

    if activated:
        logger.warning(f"Reconciliation activated {activated} subscriptions for paid payments")
    return {"activated_count": activated}
