from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Enum, JSON
import enum
from .base import BaseModel


class NotificationKind(enum.Enum):
    ASSIGNMENT = "ASSIGNMENT"
    DEADLINE_WARNING = "DEADLINE_WARNING"
    FINAL_REMINDER = "FINAL_REMINDER"
    DISQUALIFICATION = "DISQUALIFICATION"
    RESULTS_AVAILABLE = "RESULTS_AVAILABLE"
    FINALIST = "FINALIST"
    VERIFICATION_COMPLETE = "VERIFICATION_COMPLETE"
    VERIFICATION_INCOMPLETE = "VERIFICATION_INCOMPLETE"


class NotificationStatus(enum.Enum):
    QUEUED = "QUEUED"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationJob(BaseModel):
    """Outbox row; written after the business transaction commits"""
    __tablename__ = 'notification_jobs'

    kind = Column(Enum(NotificationKind), nullable=False)
    recipient_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    payload = Column(JSON, default=dict)

    status = Column(Enum(NotificationStatus), default=NotificationStatus.QUEUED, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(String(500))
    claimed_at = Column(DateTime)
    sent_at = Column(DateTime)
