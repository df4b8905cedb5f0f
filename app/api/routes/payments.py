"""
Payment endpoints: STK push initiation and status reads for the client poller.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core import config
from app.core.auth_dependency import get_db, get_current_user_id, require_cron_secret
from app.core.errors import ConfigError, NotFoundError, PersistenceError, ProviderError, ValidationError
from app.core.rate_limit import check_rate_limit, check_stk_push_rate_limit, get_client_ip
from app.schemas.payment import (
    STKPushRequest,
    STKPushResponse,
    PaymentErrorResponse,
    PaymentStatusResponse,
)
from app.schemas.subscription import ExpireStalePaymentsResponse
from app.services.payment_service import (
    initiate_stk_push,
    get_payment_status,
    expire_stale_pending,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _throttle_stk_push(user_id: str, phone: str) -> None:
    check_stk_push_rate_limit(
        user_id,
        phone,
        max_requests=config.STK_PUSH_RATE_LIMIT,
        window_seconds=config.STK_PUSH_RATE_WINDOW_SECONDS,
    )


@router.post(
    "/stk-push",
    response_model=STKPushResponse,
    responses={
        400: {"model": PaymentErrorResponse},
        404: {"model": PaymentErrorResponse},
        500: {"model": PaymentErrorResponse},
        502: {"model": PaymentErrorResponse},
    },
)
def stk_push(
    payload: STKPushRequest,
    request: Request,
    current_user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Initiate an M-Pesa STK push for the authenticated user.
    
    The payer receives a prompt on their phone; the payment row stays
    ``pending`` until the provider calls back. Poll
    ``GET /payments/{payment_id}/status`` for the outcome.
    """
    if payload.user_id != current_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot initiate payment for another user")

    try:
        result = initiate_stk_push(
            db,
            user_id=payload.user_id,
            phone=payload.phone,
            amount=payload.amount,
            account_reference=payload.account_reference,
            plan_id=payload.plan_id,
            email=payload.email,
            ip_address=get_client_ip(request),
            throttle=_throttle_stk_push,
        )
    except ValidationError as e:
        return _error(status.HTTP_400_BAD_REQUEST, str(e))
    except NotFoundError as e:
        return _error(status.HTTP_404_NOT_FOUND, str(e))
    except ConfigError as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
    except PersistenceError as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
    except ProviderError as e:
        logger.error(f"STK push provider error: user_id={current_user_id}, code={e.response_code}, error={e}")
        return _error(status.HTTP_502_BAD_GATEWAY, str(e))

    return STKPushResponse(success=True, **result)


@router.get("/{payment_id}/status", response_model=PaymentStatusResponse)
def payment_status(
    payment_id: str,
    request: Request,
    current_user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Read-only status of one of the caller's payments."""
    check_rate_limit(request, max_requests=60, window_seconds=60, key=f"payment-status:{current_user_id}")
    try:
        payment_state = get_payment_status(db, payment_id, user_id=current_user_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return PaymentStatusResponse(payment_id=payment_id, status=payment_state)


@router.post(
    "/expire-stale",
    response_model=ExpireStalePaymentsResponse,
    dependencies=[Depends(require_cron_secret)],
)
def expire_stale_payments(db: Session = Depends(get_db)):
    """Fail pending payments that never received a callback (scheduled job)."""
    expired = expire_stale_pending(db)
    return ExpireStalePaymentsResponse(expired_count=expired)
