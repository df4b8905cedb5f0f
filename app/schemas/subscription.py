"""
Pydantic schemas for subscription endpoints.
"""
from datetime import date
from typing import Optional
from pydantic import BaseModel, Field


class ActivateSubscriptionRequest(BaseModel):
    """Request schema for on-demand subscription activation."""
    user_id: str = Field(..., description="Subscriber user id")
    plan_id: str = Field(..., description="Plan to activate")
    payment_id: Optional[str] = Field(None, description="Payment that paid for the subscription")


class ActivateSubscriptionResponse(BaseModel):
    success: bool = True
    subscription_id: str
    end_date: date


class ExpireSubscriptionsResponse(BaseModel):
    success: bool = True
    expired_count: int = Field(..., description="Subscriptions moved from active to expired")


class RenewalRemindersResponse(BaseModel):
    success: bool = True
    reminders_sent: int


class ReconcilePaymentsResponse(BaseModel):
    success: bool = True
    activated_count: int = Field(..., description="Successful payments that received a subscription")


class ExpireStalePaymentsResponse(BaseModel):
    success: bool = True
    expired_count: int = Field(..., description="Pending payments marked failed after the TTL")
