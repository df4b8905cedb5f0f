"""
Payment service for M-Pesa STK push initiation.

Handles input validation, the provider round-trip, and persistence of the
pending payment row that the callback later settles.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core import config
from app.core.errors import NotFoundError, PersistenceError, ProviderError, ValidationError
from app.core.phone import normalize_phone
from app.db.models.payment import Payment, PaymentMethod, PaymentStatus
from app.db.models.plan import Plan
from app.db.models.user import User
from app.services.audit_service import log_activity
from app.services.mpesa_client import MpesaClient

logger = logging.getLogger(__name__)

PLAN_REFERENCE_PREFIX = "PLAN_"


def normalize_amount(amount: Optional[Union[int, float, str]]) -> int:
    """
    Round an amount to whole KES, which is what M-Pesa accepts.

    Raises:
        ValidationError: If the amount is missing, not numeric, or not positive
    """
    if amount is None or isinstance(amount, bool):
        raise ValidationError("Amount is required")
    try:
        value = round(float(amount))
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number")
    if value <= 0:
        raise ValidationError("Amount must be greater than 0")
    return int(value)


def plan_id_from_reference(account_reference: Optional[str]) -> Optional[str]:
    """Extract the plan id from a ``PLAN_<id>`` account reference."""
    if account_reference and account_reference.startswith(PLAN_REFERENCE_PREFIX):
        return account_reference[len(PLAN_REFERENCE_PREFIX):] or None
    return None


def resolve_purchase(
    db: Session,
    amount: Optional[Union[int, float, str]],
    plan_id: Optional[str],
    account_reference: Optional[str],
) -> Tuple[int, Optional[Plan], str]:
    """
    Work out what is being paid for.

    An explicit plan supplies the amount and a default ``PLAN_<id>``
    reference. Otherwise the caller's amount is used, and a ``PLAN_<id>``
    reference naming an existing plan still links the payment to that plan.

    Returns:
        Tuple of (amount, plan or None, account_reference)
    """
    plan = None
    if plan_id:
        plan = db.query(Plan).filter(Plan.id == plan_id, Plan.is_active.is_(True)).first()
        if not plan:
            raise NotFoundError(f"Plan not found: {plan_id}")
        amount = plan.price_kes
        account_reference = account_reference or f"{PLAN_REFERENCE_PREFIX}{plan.id}"
    else:
        referenced_plan_id = plan_id_from_reference(account_reference)
        if referenced_plan_id:
            plan = db.query(Plan).filter(Plan.id == referenced_plan_id).first()

    if not account_reference or not account_reference.strip():
        raise ValidationError("Missing required parameter: account_reference")

    return normalize_amount(amount), plan, account_reference.strip()


def initiate_stk_push(
    db: Session,
    user_id: str,
    phone: str,
    amount: Optional[Union[int, float, str]] = None,
    account_reference: Optional[str] = None,
    plan_id: Optional[str] = None,
    email: Optional[str] = None,
    client: Optional[MpesaClient] = None,
    ip_address: Optional[str] = None,
    throttle: Optional[Callable[[str, str], None]] = None,
) -> Dict[str, str]:
    """
    Initiate an M-Pesa STK push and record a pending payment.

    Args:
        db: Database session
        user_id: Paying user id
        phone: Payer phone number in any accepted Kenyan format
        amount: Amount in KES (ignored when plan_id is given)
        account_reference: Reference shown on the payer's prompt
        plan_id: Plan being purchased
        email: Payer email, kept in the audit entry only
        client: Daraja client (built from configuration when omitted)
        ip_address: Caller IP for the audit entry
        throttle: Called with (user_id, formatted phone) once the request
            is valid and before the provider is contacted; may raise to
            refuse the push

    Returns:
        Dictionary with checkout_request_id, merchant_request_id, payment_id
        and the provider's customer message

    Raises:
        ValidationError: Bad phone, amount or reference
        NotFoundError: Unknown user or plan id
        ConfigError: Missing provider credentials
        ProviderError: OAuth or STK push failure; nothing is persisted
        PersistenceError: Push accepted but the pending row could not be saved
    """
    if not user_id:
        raise ValidationError("Missing required parameter: user_id")

    formatted_phone = normalize_phone(phone)

    if not db.query(User.id).filter(User.id == user_id).first():
        raise NotFoundError(f"User not found: {user_id}")

    amount_kes, plan, account_reference = resolve_purchase(db, amount, plan_id, account_reference)

    if client is None:
        client = MpesaClient.from_config()

    if throttle is not None:
        throttle(user_id, formatted_phone)

    logger.info(f"Initiating STK push: user_id={user_id}, amount={amount_kes}, phone={formatted_phone}")

    stk_response = client.stk_push(
        phone=formatted_phone,
        amount=amount_kes,
        account_reference=account_reference,
        description=f"Payment for {account_reference}",
    )
    checkout_request_id = stk_response.get("CheckoutRequestID")
    merchant_request_id = stk_response.get("MerchantRequestID")
    if not checkout_request_id or not merchant_request_id:
        raise ProviderError("STK Push failed: response is missing request identifiers")

    try:
        payment = Payment(
            user_id=user_id,
            plan_id=plan.id if plan else None,
            amount_kes=amount_kes,
            method=PaymentMethod.MPESA.value,
            status=PaymentStatus.PENDING.value,
            phone_number=formatted_phone,
            account_reference=account_reference,
            checkout_request_id=checkout_request_id,
            merchant_request_id=merchant_request_id,
        )
        db.add(payment)
        db.flush()

        log_activity(
            db,
            user_id=user_id,
            action="mpesa_stk_push_initiated",
            details={
                "amount": amount_kes,
                "phone": formatted_phone,
                "email": email,
                "account_reference": account_reference,
                "checkout_request_id": checkout_request_id,
                "merchant_request_id": merchant_request_id,
                "payment_id": payment.id,
            },
            ip_address=ip_address,
        )
        db.commit()
        db.refresh(payment)
    except SQLAlchemyError as e:
        db.rollback()
        # The payer was prompted; these ids are needed to match a later callback by hand
        logger.error(
            f"Pending payment not saved after accepted STK push: user_id={user_id}, amount={amount_kes}, "
            f"checkout_request_id={checkout_request_id}, merchant_request_id={merchant_request_id}: {e}",
            exc_info=True,
        )
        raise PersistenceError("Payment request was sent but could not be recorded") from e

    logger.info(f"STK push initiated: payment_id={payment.id}, checkout_request_id={checkout_request_id}")

    return {
        "message": stk_response.get("CustomerMessage") or "STK Push sent successfully",
        "checkout_request_id": checkout_request_id,
        "merchant_request_id": merchant_request_id,
        "payment_id": payment.id,
    }


def get_payment_status(db: Session, payment_id: str, user_id: Optional[str] = None) -> str:
    """
    Read a payment's status for the client poller.

    Raises:
        NotFoundError: If the payment does not exist or belongs to another user
    """
    query = db.query(Payment.status).filter(Payment.id == payment_id)
    if user_id is not None:
        query = query.filter(Payment.user_id == user_id)
    row = query.first()
    if not row:
        raise NotFoundError(f"Payment not found: {payment_id}")
    return row[0]


def expire_stale_pending(
    db: Session,
    max_age_hours: int = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Fail pending payments that never received a callback.

    Each row is moved with a conditional update, so a callback that lands
    concurrently wins and the row is skipped here.

    Returns:
        Number of payments marked failed
    """
    if max_age_hours is None:
        max_age_hours = config.PENDING_PAYMENT_TTL_HOURS
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=max_age_hours)

    stale = db.query(Payment).filter(
        Payment.status == PaymentStatus.PENDING.value,
        Payment.created_at < cutoff,
    ).all()

    expired = 0
    for payment in stale:
        updated = db.query(Payment).filter(
            Payment.id == payment.id,
            Payment.status == PaymentStatus.PENDING.value,
        ).update(
            {
                Payment.status: PaymentStatus.FAILED.value,
                Payment.result_desc: f"No callback received within {max_age_hours}h",
                Payment.updated_at: now,
            },
            synchronize_session=False,
        )
        if not updated:
            continue
        expired += 1
        log_activity(
            db,
            user_id=payment.user_id,
            action="mpesa_payment_timed_out",
            details={
                "payment_id": payment.id,
                "checkout_request_id": payment.checkout_request_id,
                "created_at": payment.created_at.isoformat() if payment.created_at else None,
                "max_age_hours": max_age_hours,
            },
        )
    db.commit()

    if expired:
        logger.warning(f"Expired {expired} stale pending payments older than {max_age_hours}h")
    return expired
