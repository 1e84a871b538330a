from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, Text, Enum, JSON
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class SubmissionStatus(enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    SUBMITTED = "SUBMITTED"
    ELIMINATED = "ELIMINATED"
    ELIMINATED_ACCEPTED = "ELIMINATED_ACCEPTED"
    PEER_VERIFICATION_PENDING = "PEER_VERIFICATION_PENDING"
    REINSTATED = "REINSTATED"
    DISQUALIFIED = "DISQUALIFIED"


class Submission(BaseModel):
    __tablename__ = 'submissions'

    contest_id = Column(Integer, ForeignKey('contests.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    status = Column(Enum(SubmissionStatus), default=SubmissionStatus.PENDING_PAYMENT,
                    nullable=False, index=True)
    title = Column(String(255))
    body_text = Column(Text)
    submission_code = Column(String(32), unique=True)

    # Outcomes
    is_finalist = Column(Boolean, default=False, nullable=False)
    peer_verification_result = Column(JSON)

    # Relationships
    contest = relationship("Contest", back_populates="submissions")
    author = relationship("User", back_populates="submissions")
    assignments = relationship("Assignment", back_populates="submission", lazy='dynamic',
                               foreign_keys='Assignment.submission_id')
