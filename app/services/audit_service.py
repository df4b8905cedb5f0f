"""
Audit trail and callback error log writers.
"""
import logging
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from app.db.models.activity_log import ActivityLog
from app.db.models.mpesa_callback_error import MpesaCallbackError

logger = logging.getLogger(__name__)


def log_activity(
    db: Session,
    user_id: Optional[str],
    action: str,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ActivityLog:
    """
    Add an audit entry to the session.
    
    The caller commits, so the entry lands in the same transaction as the
    state change it describes.
    """
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        details=details or {},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(entry)
    logger.debug(f"Activity logged: user_id={user_id}, action={action}")
    return entry


def record_callback_error(
    db: Session,
    payload: Any,
    error_message: str,
    error_details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> Optional[MpesaCallbackError]:
    """
    Persist a callback reconciliation error for operator review.
    
    Best effort: this runs on the webhook's failure path, so a database error
    here is logged and swallowed rather than raised.
    """
    if not isinstance(payload, (dict, list)):
        payload = {"raw": payload}
    
    try:
        error = MpesaCallbackError(
            callback_payload=payload,
            error_message=error_message,
            error_details=error_details or {},
            ip_address=ip_address,
        )
        db.add(error)
        db.commit()
        return error
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to record callback error ({error_message}): {e}", exc_info=True)
        return None
