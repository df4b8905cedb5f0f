import uuid
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime
from sqlalchemy.sql import func
from app.db.base import Base


class Plan(Base):
    """
    Internet plan catalog entry.
    
    Read-only from the payment flow: the price drives the STK push amount and
    validity_days drives the subscription window.
    """
    __tablename__ = "plans"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price_kes = Column(Integer, nullable=False, index=True)
    speed_limit_mbps = Column(Integer, nullable=False)
    validity_days = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
