import uuid
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from app.db.base import Base


class ActivityLog(Base):
    """
    Audit trail entry.
    
    Every payment and subscription transition writes one row here so the
    back-office can reconstruct what happened for a user.
    """
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=True, index=True)
    action = Column(String, nullable=False, index=True)  # "mpesa_stk_push_initiated", "subscription_created", ...
    details = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
