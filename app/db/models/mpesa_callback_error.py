import uuid
from sqlalchemy import Column, String, Text, DateTime, JSON
from sqlalchemy.sql import func
from app.db.base import Base


class MpesaCallbackError(Base):
    """
    Operator-visible log of callbacks that could not be reconciled.
    
    The callback endpoint always acknowledges the provider, so this table is
    the only place internal failures surface.
    """
    __tablename__ = "mpesa_callback_errors"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    callback_payload = Column(JSON, nullable=False)
    error_message = Column(Text, nullable=False)
    error_details = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
