from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from config.config import Config
from review_engine.models import Assignment, Submission, User
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.models.submission import SubmissionStatus
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModePolicy:
    """What differs between peer verification and the contest-wide review phase"""
    mode: AssignmentMode
    eligible_statuses: FrozenSet[SubmissionStatus]
    uses_controls: bool
    blacklist_expired: bool


VERIFICATION_POLICY = ModePolicy(
    mode=AssignmentMode.VERIFICATION,
    eligible_statuses=frozenset({SubmissionStatus.SUBMITTED, SubmissionStatus.ELIMINATED}),
    uses_controls=True,
    blacklist_expired=True,
)

REVIEW_POLICY = ModePolicy(
    mode=AssignmentMode.REVIEW,
    eligible_statuses=frozenset({SubmissionStatus.SUBMITTED, SubmissionStatus.REINSTATED}),
    uses_controls=False,
    blacklist_expired=False,
)

MODE_POLICIES: Dict[AssignmentMode, ModePolicy] = {
    AssignmentMode.VERIFICATION: VERIFICATION_POLICY,
    AssignmentMode.REVIEW: REVIEW_POLICY,
}


@dataclass(frozen=True)
class EligibleReviewer:
    id: int
    display_id: str
    integrity_score: int


class EligibilityResolver:
    """Computes who may review a submission in a contest"""

    def resolve(self, db: Session, contest_id: int, exclude_user_id: Optional[int],
                exclude_reviewer_ids: Iterable[int] = (),
                policy: ModePolicy = REVIEW_POLICY) -> List[EligibleReviewer]:
        """Users with a qualifying submission in the contest who are not banned,
        not the author and not in exclude_reviewer_ids. An empty list is a valid answer.
        """
        excluded = set(exclude_reviewer_ids)
        if exclude_user_id is not None:
            excluded.add(exclude_user_id)

        qualifying = db.query(Submission.user_id).filter(
            Submission.contest_id == contest_id,
            Submission.status.in_(policy.eligible_statuses)
        )

        query = db.query(User).filter(
            User.id.in_(qualifying),
            User.is_banned.is_(False)
        )
        if excluded:
            query = query.filter(User.id.notin_(excluded))

        # Stable order so a seeded selector reproduces the same panel
        users = query.order_by(User.id).all()

        return [
            EligibleReviewer(id=u.id, display_id=u.display_id, integrity_score=u.integrity_score)
            for u in users
        ]

    def active_reviewer_ids(self, db: Session, submission_id: int, mode: AssignmentMode = None) -> Set[int]:
        """Reviewers holding a PENDING or DONE assignment for the submission, in any mode unless given"""
        query = db.query(Assignment.reviewer_id).filter(
            Assignment.submission_id == submission_id,
            Assignment.status != AssignmentStatus.EXPIRED
        )
        if mode is not None:
            query = query.filter(Assignment.mode == mode)
        return {r[0] for r in query.all()}

    def panel_reviewer_ids(self, db: Session, request_id: int) -> Set[int]:
        """Live reviewers of a verification request's target, not counting control holders"""
        rows = db.query(Assignment.reviewer_id).filter(
            Assignment.submission_id == request_id,
            Assignment.verification_request_id == request_id,
            Assignment.status != AssignmentStatus.EXPIRED
        ).all()
        return {r[0] for r in rows}

    def historical_reviewer_ids(self, db: Session, submission_id: int) -> Set[int]:
        """Everyone who ever held an assignment for the submission, in any state or mode"""
        rows = db.query(Assignment.reviewer_id).filter(
            Assignment.submission_id == submission_id
        ).distinct().all()
        return {r[0] for r in rows}

    def active_pairs_for_reviewer(self, db: Session, reviewer_id: int, mode: AssignmentMode = None) -> Set[int]:
        """Submission ids the reviewer already holds a live assignment for"""
        query = db.query(Assignment.submission_id).filter(
            Assignment.reviewer_id == reviewer_id,
            Assignment.status != AssignmentStatus.EXPIRED
        )
        if mode is not None:
            query = query.filter(Assignment.mode == mode)
        return {r[0] for r in query.all()}

    def blacklisted_reviewer_ids(self, db: Session, now: datetime = None) -> Set[int]:
        """Reviewers who let too many verification assignments expire recently"""
        now = now or datetime.utcnow()
        since = now - timedelta(days=Config.EXPIRED_BLACKLIST_DAYS)

        rows = db.query(Assignment.reviewer_id, func.count(Assignment.id)).filter(
            Assignment.mode == AssignmentMode.VERIFICATION,
            Assignment.status == AssignmentStatus.EXPIRED,
            Assignment.deadline >= since
        ).group_by(Assignment.reviewer_id).all()

        blacklisted = {
            reviewer_id for reviewer_id, expired in rows
            if expired >= Config.EXPIRED_BLACKLIST_THRESHOLD
        }
        if blacklisted:
            logger.info(f"Excluding {len(blacklisted)} reviewers with repeated expired assignments")
        return blacklisted
