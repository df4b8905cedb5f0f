"""
M-Pesa STK push callback webhook.

The provider retries or flags the endpoint on anything but 200, so this
route acknowledges every delivery; failures are visible only in the
mpesa_callback_errors table.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db
from app.core.rate_limit import get_client_ip
from app.services.callback_service import receive_callback

router = APIRouter(tags=["M-Pesa Callback"])


@router.post("/mpesa-callback")
async def mpesa_callback(request: Request, db: Session = Depends(get_db)):
    payload = await request.body()
    return receive_callback(db, payload, source_ip=get_client_ip(request))
