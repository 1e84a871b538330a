"""Outlier-resistant score aggregation and contest ranking."""
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from config.config import Config
from review_engine.database import get_db
from review_engine.models import Assignment, Review, ScoreSnapshot, Submission
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.models.review import CRITERIA
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


def trimmed_mean(values: Sequence[float], trim_threshold: int = None) -> float:
    """Mean that drops one lowest and one highest value once there are enough of them.

    >>> trimmed_mean([1, 5, 3, 3, 3, 3, 3])
    3.0
    """
    if not values:
        raise ValueError('trimmed_mean requires at least one value')
    threshold = trim_threshold if trim_threshold is not None else Config.TRIM_THRESHOLD

    ordered = sorted(values)
    if len(ordered) >= threshold and len(ordered) > 2:
        ordered = ordered[1:-1]
    return sum(ordered) / len(ordered)


def overall_score(criterion_means: Dict[str, float]) -> float:
    """Plain mean of the per-criterion means, rounded to 2 places"""
    return round(sum(criterion_means[c] for c in CRITERIA) / len(CRITERIA), 2)


def rank_order(scores: Sequence[Tuple[int, float]]) -> List[int]:
    """Submission ids by score descending; equal scores fall back to the lower id"""
    return [sid for sid, _ in sorted(scores, key=lambda item: (-item[1], item[0]))]


class ScoringService:

    def __init__(self, settings=None):
        self.settings = settings

    def aggregate(self, submission_id: int, db: Session = None, now: datetime = None,
                  trim_threshold: int = None) -> Optional[ScoreSnapshot]:
        """Recompute the snapshot from DONE review assignments; None when there are no reviews"""
        if db is None:
            with get_db() as session:
                return self.aggregate(submission_id, session, now, trim_threshold)

        now = now or datetime.utcnow()
        submission = db.get(Submission, submission_id)
        if not submission:
            logger.warning(f"Cannot aggregate scores for missing submission {submission_id}")
            return None
        if trim_threshold is None:
            trim_threshold = self._trim_threshold(submission.contest_id)

        reviews = db.query(Review).join(Assignment, Review.assignment_id == Assignment.id).filter(
            Assignment.submission_id == submission_id,
            Assignment.mode == AssignmentMode.REVIEW,
            Assignment.status == AssignmentStatus.DONE
        ).all()

        if not reviews:
            return None

        means = {
            criterion: trimmed_mean([getattr(r, criterion) for r in reviews], trim_threshold)
            for criterion in CRITERIA
        }

        snapshot = db.query(ScoreSnapshot).filter_by(submission_id=submission_id).first()
        if not snapshot:
            snapshot = ScoreSnapshot(submission_id=submission_id)
            db.add(snapshot)

        snapshot.overall = overall_score(means)
        for criterion, value in means.items():
            setattr(snapshot, criterion, round(value, 4))
        snapshot.review_count = len(reviews)
        snapshot.used_trimmed_mean = len(reviews) >= trim_threshold and len(reviews) > 2
        snapshot.computed_at = now
        db.flush()

        logger.info(f"Scored submission {submission_id}: overall {snapshot.overall} from {len(reviews)} reviews")
        return snapshot

    def rank_contest(self, contest_id: int, db: Session = None,
                     submission_ids: Sequence[int] = None) -> List[int]:
        """Write ranks onto snapshots and return submission ids in rank order.

        Restricting to submission_ids leaves other snapshots unranked.
        """
        if db is None:
            with get_db() as session:
                return self.rank_contest(contest_id, session, submission_ids)

        query = db.query(ScoreSnapshot).join(Submission, ScoreSnapshot.submission_id == Submission.id).filter(
            Submission.contest_id == contest_id
        )
        snapshots = {s.submission_id: s for s in query.all()}

        eligible = snapshots if submission_ids is None else {
            sid: snapshots[sid] for sid in submission_ids if sid in snapshots
        }
        ordered = rank_order([(sid, s.overall) for sid, s in eligible.items()])

        for snapshot in snapshots.values():
            snapshot.rank = None
        for position, sid in enumerate(ordered, start=1):
            snapshots[sid].rank = position
        db.flush()

        return ordered

    def _trim_threshold(self, contest_id: int) -> int:
        if self.settings is None:
            return Config.TRIM_THRESHOLD
        return self.settings.get(contest_id).trim_threshold
