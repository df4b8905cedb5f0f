import enum
import uuid
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.db.base import Base


class PaymentMethod(str, enum.Enum):
    MPESA = "MPESA"
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Payment(Base):
    """
    One mobile-money transaction attempt.
    
    Created as ``pending`` by the STK push initiator and settled exactly once
    by the M-Pesa callback. ``checkout_request_id`` is the join key between
    the two.
    """
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("plans.id"), nullable=True)
    amount_kes = Column(Integer, nullable=False)
    method = Column(String, default=PaymentMethod.MPESA.value, nullable=False)
    status = Column(String, default=PaymentStatus.PENDING.value, nullable=False, index=True)

    checkout_request_id = Column(String, unique=True, index=True, nullable=True)
    merchant_request_id = Column(String, nullable=True)
    mpesa_receipt_number = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    account_reference = Column(String, nullable=True)  # display only
    result_code = Column(Integer, nullable=True)
    result_desc = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    plan = relationship("Plan")

    __table_args__ = (
        Index('idx_payment_status_created', 'status', 'created_at'),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != PaymentStatus.PENDING.value
