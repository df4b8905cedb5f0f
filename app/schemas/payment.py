"""
Pydantic schemas for payment endpoints.
"""
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class STKPushRequest(BaseModel):
    """Request schema for initiating an M-Pesa STK push."""
    user_id: str = Field(..., min_length=1, description="Paying user's id (must match the bearer token)")
    phone: str = Field(..., min_length=1, description="Kenyan mobile number (+254..., 254..., 07..., 01...)")
    amount: Optional[float] = Field(None, description="Amount in KES; taken from the plan when plan_id is given")
    plan_id: Optional[str] = Field(None, description="Plan being purchased")
    account_reference: Optional[str] = Field(None, max_length=64, description="Reference shown on the M-Pesa prompt")
    email: Optional[str] = Field(None, description="Payer email (informational)")

    @field_validator("phone")
    @classmethod
    def strip_phone(cls, v: str) -> str:
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "9b2f6c1e-3a4d-4c8e-9f10-2b7d5e6a1c33",
                "phone": "0712345678",
                "amount": 1000,
                "account_reference": "PLAN_abc",
                "email": "client@example.com"
            }
        }


class STKPushResponse(BaseModel):
    """Response schema for a successful STK push initiation."""
    success: bool = Field(True, description="Always true on this schema")
    message: str = Field(..., description="Customer-facing message from the provider")
    checkout_request_id: str = Field(..., description="Provider CheckoutRequestID (callback join key)")
    merchant_request_id: str = Field(..., description="Provider MerchantRequestID")
    payment_id: str = Field(..., description="Id of the pending payment row")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Success. Request accepted for processing",
                "checkout_request_id": "ws_CO_191220191020363925",
                "merchant_request_id": "29115-34620561-1",
                "payment_id": "0d6f9a9c-51a7-4c43-b1d3-7f7c8f6d2c10"
            }
        }


class PaymentErrorResponse(BaseModel):
    """Error response schema for payment initiation."""
    success: bool = Field(False, description="Always false on this schema")
    error: str = Field(..., description="Error message")


class PaymentStatusResponse(BaseModel):
    """Response schema for the payment status read used by the client poller."""
    payment_id: str
    status: str = Field(..., description="pending | success | failed")
