"""
M-Pesa STK push callback handling.

Settles the pending payment matched by CheckoutRequestID and activates the
purchased subscription. Nothing in here may raise to the route: the
provider always gets an acknowledgement, and failures are written to the
mpesa_callback_errors table instead.
"""
import json
import logging
import traceback
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.core.errors import ReconciliationError
from app.db.models.payment import Payment, PaymentStatus
from app.schemas.mpesa_callback import MpesaCallbackEnvelope, StkCallback
from app.services.audit_service import log_activity, record_callback_error
from app.services.subscription_service import activate, find_plan_for_payment

logger = logging.getLogger(__name__)

SUCCESS_RESULT_CODE = 0

ACKNOWLEDGEMENT = {"status": "OK"}


def parse_callback(payload: Dict[str, Any]) -> StkCallback:
    """Validate the callback envelope and return the inner stkCallback."""
    return MpesaCallbackEnvelope.model_validate(payload).body.stk_callback


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def extract_metadata(callback: StkCallback) -> Dict[str, Any]:
    """
    Pull receipt, amount and phone out of CallbackMetadata by item name.

    Returns:
        Dictionary with mpesa_receipt_number, amount and phone_number (None when absent)
    """
    items = callback.metadata_dict()
    receipt = items.get("MpesaReceiptNumber")
    phone = items.get("PhoneNumber")
    return {
        "mpesa_receipt_number": str(receipt) if receipt is not None else None,
        "amount": _as_int(items.get("Amount")),
        "phone_number": str(phone) if phone is not None else None,
    }


def apply_callback(db: Session, callback: StkCallback, source_ip: Optional[str] = None) -> bool:
    """
    Apply a parsed callback to its payment.

    Returns:
        True if the payment transitioned, False if it was already settled

    Raises:
        ReconciliationError: If no payment matches the checkout request id
    """
    payment = db.query(Payment).filter(
        Payment.checkout_request_id == callback.checkout_request_id
    ).first()
    if not payment:
        raise ReconciliationError("Payment record not found")

    if payment.is_terminal:
        logger.info(
            f"Duplicate callback for settled payment ignored: payment_id={payment.id}, "
            f"status={payment.status}, result_code={callback.result_code}"
        )
        return False

    succeeded = callback.result_code == SUCCESS_RESULT_CODE
    new_status = PaymentStatus.SUCCESS.value if succeeded else PaymentStatus.FAILED.value
    metadata = extract_metadata(callback) if succeeded else {
        "mpesa_receipt_number": None, "amount": None, "phone_number": None,
    }
    now = datetime.utcnow()

    update_data = {
        Payment.status: new_status,
        Payment.result_code: callback.result_code,
        Payment.result_desc: callback.result_desc,
        Payment.updated_at: now,
    }
    if succeeded:
        update_data[Payment.mpesa_receipt_number] = metadata["mpesa_receipt_number"]
        update_data[Payment.paid_at] = now

    # Only a pending row may transition; terminal states are final
    updated = db.query(Payment).filter(
        Payment.id == payment.id,
        Payment.status == PaymentStatus.PENDING.value,
    ).update(update_data, synchronize_session=False)

    if not updated:
        db.rollback()
        logger.warning(
            f"Callback for already reconciled payment ignored: payment_id={payment.id}, "
            f"checkout_request_id={callback.checkout_request_id}, result_code={callback.result_code}"
        )
        return False

    log_activity(
        db,
        user_id=payment.user_id,
        action="mpesa_payment_callback",
        details={
            "payment_id": payment.id,
            "status": new_status,
            "amount": metadata["amount"] or payment.amount_kes,
            "mpesa_receipt_number": metadata["mpesa_receipt_number"],
            "phone_number": metadata["phone_number"] or payment.phone_number,
            "result_code": callback.result_code,
            "result_desc": callback.result_desc,
        },
        ip_address=source_ip,
    )
    db.commit()

    if succeeded:
        logger.info(
            f"Payment successful: payment_id={payment.id}, amount={metadata['amount']}, "
            f"receipt={metadata['mpesa_receipt_number']}"
        )
        activate_for_payment(db, payment.id, metadata["amount"], source_ip)
    else:
        logger.info(f"Payment failed: payment_id={payment.id}, result_desc={callback.result_desc}")

    return True


def activate_for_payment(
    db: Session,
    payment_id: str,
    confirmed_amount: Optional[int] = None,
    source_ip: Optional[str] = None,
) -> Optional[Dict]:
    """
    Create the subscription a settled payment bought.

    Failures are recorded but not raised; the reconciliation sweep retries
    successful payments that still have no subscription.
    """
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    plan = find_plan_for_payment(db, payment, confirmed_amount)
    if not plan:
        logger.error(f"Could not find matching plan for payment_id={payment_id}, amount={confirmed_amount or payment.amount_kes}")
        record_callback_error(
            db,
            payload={"payment_id": payment_id},
            error_message="No plan matches paid amount",
            error_details={"amount": confirmed_amount or payment.amount_kes},
            ip_address=source_ip,
        )
        return None

    try:
        return activate(db, payment.user_id, plan.id, payment.id)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating subscription for payment_id={payment_id}: {e}", exc_info=True)
        record_callback_error(
            db,
            payload={"payment_id": payment_id, "plan_id": plan.id},
            error_message=f"Subscription activation failed: {e}",
            ip_address=source_ip,
        )
        return None


def receive_callback(
    db: Session,
    raw_body: Union[bytes, str],
    source_ip: Optional[str] = None,
) -> Dict[str, str]:
    """
    Handle one provider callback delivery.

    Always returns the acknowledgement body; the route always answers 200.
    """
    payload: Any = raw_body.decode("utf-8", errors="replace") if isinstance(raw_body, bytes) else raw_body

    try:
        payload = json.loads(payload)
        logger.info(f"M-Pesa callback received from {source_ip}")
        callback = parse_callback(payload)
        apply_callback(db, callback, source_ip)
    except ReconciliationError as e:
        db.rollback()
        checkout_request_id = callback.checkout_request_id
        logger.error(f"{e}: checkout_request_id={checkout_request_id}")
        record_callback_error(
            db,
            payload=payload,
            error_message=str(e),
            error_details={"checkout_request_id": checkout_request_id},
            ip_address=source_ip,
        )
    except (ValueError, PydanticValidationError) as e:
        db.rollback()
        logger.error(f"Malformed M-Pesa callback: {e}")
        record_callback_error(
            db,
            payload=payload,
            error_message="Malformed callback payload",
            error_details={"error": str(e)},
            ip_address=source_ip,
        )
    except Exception as e:
        db.rollback()
        logger.error(f"M-Pesa callback error: {e}", exc_info=True)
        record_callback_error(
            db,
            payload=payload,
            error_message=str(e) or "Unknown error",
            error_details={"stack": traceback.format_exc()},
            ip_address=source_ip,
        )

    return ACKNOWLEDGEMENT
