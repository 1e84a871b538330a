from datetime import datetime
from typing import Dict, List, Optional

from config.config import Config
from review_engine.database import get_db
from review_engine.errors import (ConflictError, InvalidStatusError, NotFoundError,
                                  ValidationError)
from review_engine.models import Assignment, Review, Submission
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.models.review import CRITERIA, ReviewDecision
from review_engine.services.assignment_store import AssignmentStore
from review_engine.services.scoring_service import ScoringService
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


def validate_scores(scores: Dict) -> Dict[str, int]:
    """Four integer criterion scores in the allowed range"""
    if not isinstance(scores, dict):
        raise ValidationError('Scores are required')

    cleaned = {}
    for criterion in CRITERIA:
        value = scores.get(criterion)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f'{criterion} must be an integer')
        if not Config.SCORE_MIN <= value <= Config.SCORE_MAX:
            raise ValidationError(
                f'{criterion} must be between {Config.SCORE_MIN} and {Config.SCORE_MAX}'
            )
        cleaned[criterion] = value
    return cleaned


def validate_decision(decision) -> ReviewDecision:
    if isinstance(decision, ReviewDecision):
        return decision
    try:
        return ReviewDecision(str(decision).upper())
    except ValueError:
        raise ValidationError('decision must be ELIMINATE or REINSTATE')


def validate_comment(comment) -> str:
    if not isinstance(comment, str) or not comment.strip():
        raise ValidationError('Comment is required')
    comment = comment.strip()
    if len(comment) > Config.COMMENT_MAX_LENGTH:
        raise ValidationError(f'Comment must be at most {Config.COMMENT_MAX_LENGTH} characters')
    return comment


class ReviewService:
    """Accepts reviewer verdicts and triggers scoring or verification results"""

    def __init__(self, store: AssignmentStore = None, scoring: ScoringService = None,
                 verification_results=None):
        self.store = store or AssignmentStore()
        self.scoring = scoring or ScoringService()
        self.verification_results = verification_results

    def submit_review(self, assignment_id: int, reviewer_id: int, comment: str,
                      scores: Dict = None, decision=None, now: datetime = None) -> Dict:
        """Record a review and complete its assignment in one transaction"""
        now = now or datetime.utcnow()

        with get_db() as db:
            assignment = db.get(Assignment, assignment_id)
            if not assignment or assignment.reviewer_id != reviewer_id:
                raise NotFoundError('Assignment not found', assignment_id=assignment_id)
            if assignment.status != AssignmentStatus.PENDING:
                raise InvalidStatusError(
                    'Assignment is not pending', assignment_id=assignment_id,
                    status=assignment.status.value
                )
            if assignment.deadline < now:
                raise InvalidStatusError('Review deadline has passed', assignment_id=assignment_id)
            if db.query(Review.id).filter_by(assignment_id=assignment_id).first():
                raise ConflictError('Review already submitted', assignment_id=assignment_id)

            submission = db.get(Submission, assignment.submission_id)
            if submission.user_id == reviewer_id:
                raise ValidationError('Cannot review your own submission', assignment_id=assignment_id)

            fields = {'comment': validate_comment(comment)}
            if assignment.mode == AssignmentMode.REVIEW:
                fields.update(validate_scores(scores))
            else:
                fields['decision'] = validate_decision(decision)

            review = self.store.complete_with_review(db, assignment, fields, now)
            db.flush()

            mode = assignment.mode
            submission_id = assignment.submission_id
            request_id = assignment.verification_request_id
            review_id = review.id

        logger.info(f"Review {review_id} submitted for assignment {assignment_id} by reviewer {reviewer_id}")

        follow_up = self._after_completion(mode, submission_id, request_id, now)
        return {'success': True, 'review_id': review_id, 'assignment_id': assignment_id, **follow_up}

    def _after_completion(self, mode: AssignmentMode, submission_id: int,
                          request_id: Optional[int], now: datetime) -> Dict:
        """Scoring and verification results run after the review commits; their errors
        are logged and never undo the review"""
        try:
            if mode == AssignmentMode.REVIEW:
                if self._pending_count(submission_id, AssignmentMode.REVIEW) == 0:
                    snapshot = self.scoring.aggregate(submission_id, now=now)
                    return {'score_updated': snapshot is not None}
            elif self.verification_results and request_id:
                outcome = self.verification_results.finalize_if_complete(request_id, now=now)
                return {'verification_completed': outcome is not None}
        except Exception as e:
            logger.error(f"Error after completing review for submission {submission_id}: {str(e)}")
        return {}

    def _pending_count(self, submission_id: int, mode: AssignmentMode) -> int:
        with get_db() as db:
            return db.query(Assignment).filter(
                Assignment.submission_id == submission_id,
                Assignment.mode == mode,
                Assignment.status == AssignmentStatus.PENDING
            ).count()

    def list_assignments(self, reviewer_id: int, status: AssignmentStatus = None) -> List[Dict]:
        """The reviewer's own assignments; controls are indistinguishable from targets"""
        with get_db() as db:
            query = db.query(Assignment, Submission).join(
                Submission, Assignment.submission_id == Submission.id
            ).filter(Assignment.reviewer_id == reviewer_id)
            if status:
                query = query.filter(Assignment.status == status)

            return [{
                'id': a.id,
                'mode': a.mode.value,
                'status': a.status.value,
                'deadline': a.deadline.isoformat(),
                'assigned_at': a.assigned_at.isoformat(),
                'completed_at': a.completed_at.isoformat() if a.completed_at else None,
                'submission': {
                    'code': s.submission_code,
                    'title': s.title,
                    'body_text': s.body_text,
                }
            } for a, s in query.order_by(Assignment.deadline, Assignment.id).all()]
