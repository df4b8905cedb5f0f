"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in database migrations and table creation.
"""
from app.db.models.user import User
from app.db.models.plan import Plan
from app.db.models.payment import Payment, PaymentMethod, PaymentStatus
from app.db.models.subscription import Subscription, SubscriptionStatus
from app.db.models.activity_log import ActivityLog
from app.db.models.mpesa_callback_error import MpesaCallbackError

# Explicitly export all models for clarity
__all__ = [
    "User",
    "Plan",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "Subscription",
    "SubscriptionStatus",
    "ActivityLog",
    "MpesaCallbackError",
]
