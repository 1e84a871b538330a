from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, Index, text
from sqlalchemy.orm import relationship
import enum
from .base import BaseModel


class AssignmentMode(enum.Enum):
    REVIEW = "REVIEW"
    VERIFICATION = "VERIFICATION"


class AssignmentStatus(enum.Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    EXPIRED = "EXPIRED"


ACTIVE_PAIR_CLAUSE = text("status != 'EXPIRED'")


class Assignment(BaseModel):
    __tablename__ = 'assignments'
    __table_args__ = (
        # At most one live (PENDING or DONE) obligation per pair, whatever the mode
        Index(
            'uq_assignments_active_pair',
            'submission_id', 'reviewer_id',
            unique=True,
            sqlite_where=ACTIVE_PAIR_CLAUSE,
            postgresql_where=ACTIVE_PAIR_CLAUSE,
        ),
    )

    submission_id = Column(Integer, ForeignKey('submissions.id'), nullable=False, index=True)
    reviewer_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    mode = Column(Enum(AssignmentMode), nullable=False)

    # Status
    status = Column(Enum(AssignmentStatus), default=AssignmentStatus.PENDING, nullable=False, index=True)

    # Timing
    assigned_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)
    deadline = Column(DateTime, nullable=False, index=True)

    # Verification panels point at the submission being verified; controls share it
    verification_request_id = Column(Integer, ForeignKey('submissions.id'), index=True)

    # Set on replacement rows created by reassignment
    replaces_assignment_id = Column(Integer, ForeignKey('assignments.id'), unique=True)

    # Relationships
    submission = relationship("Submission", back_populates="assignments", foreign_keys=[submission_id])
    reviewer = relationship("User", back_populates="assignments", foreign_keys=[reviewer_id])
    review = relationship("Review", back_populates="assignment", uselist=False)

    @property
    def is_control(self):
        return (self.mode == AssignmentMode.VERIFICATION
                and self.verification_request_id is not None
                and self.verification_request_id != self.submission_id)
