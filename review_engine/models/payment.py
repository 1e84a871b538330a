from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Enum
import enum
from .base import BaseModel


class PaymentPurpose(enum.Enum):
    ENTRY_FEE = "ENTRY_FEE"
    PEER_VERIFICATION = "PEER_VERIFICATION"


class PaymentStatus(enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Payment(BaseModel):
    __tablename__ = 'payments'

    submission_id = Column(Integer, ForeignKey('submissions.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    purpose = Column(Enum(PaymentPurpose), nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    amount_cents = Column(Integer)

    # Stripe details
    external_ref = Column(String(255))  # checkout session id
    payment_intent_id = Column(String(255))
    refund_id = Column(String(255))

    paid_at = Column(DateTime)
    refunded_at = Column(DateTime)
