from sqlalchemy import Column, String, Enum, JSON
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class ContestPhase(enum.Enum):
    SUBMISSIONS_OPEN = "SUBMISSIONS_OPEN"
    SUBMISSIONS_CLOSED = "SUBMISSIONS_CLOSED"
    AI_FILTERING = "AI_FILTERING"
    PEER_REVIEW = "PEER_REVIEW"
    PUBLIC_VOTING = "PUBLIC_VOTING"
    FINALIZED = "FINALIZED"


PHASE_ORDER = list(ContestPhase)


class Contest(BaseModel):
    __tablename__ = 'contests'

    name = Column(String(255), nullable=False)
    phase = Column(Enum(ContestPhase), default=ContestPhase.SUBMISSIONS_OPEN, nullable=False, index=True)

    # deadline_days, finalist_count, results_visible, reviewers_per_verification,
    # reviews_per_reviewer, trim_threshold
    voting_rules = Column(JSON, default=dict)

    # Relationships
    submissions = relationship("Submission", back_populates="contest", lazy='dynamic')
