"""
Subscription endpoints for the scheduler and back-office operators.

All routes require the X-Cron-Secret header.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db, require_cron_secret
from app.core.errors import NotFoundError
from app.schemas.subscription import (
    ActivateSubscriptionRequest,
    ActivateSubscriptionResponse,
    ExpireSubscriptionsResponse,
    RenewalRemindersResponse,
    ReconcilePaymentsResponse,
)
from app.services import subscription_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/subscriptions",
    tags=["Subscriptions"],
    dependencies=[Depends(require_cron_secret)],
)


@router.post("/activate", response_model=ActivateSubscriptionResponse)
def activate_subscription(payload: ActivateSubscriptionRequest, db: Session = Depends(get_db)):
    try:
        result = subscription_service.activate(db, payload.user_id, payload.plan_id, payload.payment_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")
    return ActivateSubscriptionResponse(subscription_id=result["subscription_id"], end_date=result["end_date"])


@router.post("/expire", response_model=ExpireSubscriptionsResponse)
def expire_subscriptions(db: Session = Depends(get_db)):
    result = subscription_service.expire_due(db)
    return ExpireSubscriptionsResponse(**result)


@router.post("/reminders", response_model=RenewalRemindersResponse)
def renewal_reminders(db: Session = Depends(get_db)):
    result = subscription_service.send_renewal_reminders(db)
    return RenewalRemindersResponse(**result)


@router.post("/reconcile", response_model=ReconcilePaymentsResponse)
def reconcile_payments(db: Session = Depends(get_db)):
    result = subscription_service.reconcile_paid_payments(db)
    return ReconcilePaymentsResponse(**result)
