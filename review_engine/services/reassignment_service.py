from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from review_engine.database import get_db
from review_engine.errors import (ConflictError, InvalidStatusError, NotFoundError,
                                  ValidationError)
from review_engine.models import Assignment, Contest, Submission
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.models.contest import ContestPhase
from review_engine.models.submission import SubmissionStatus
from review_engine.results import ReassignmentResult
from review_engine.services.assignment_store import AssignmentStore
from review_engine.services.eligibility_service import EligibilityResolver, MODE_POLICIES
from review_engine.services.notification_service import Notifier
from review_engine.services.panel_selector import PanelItem, PanelSelector
from review_engine.services.settings_provider import ContestSettingsProvider
from review_engine.utils.logger import get_logger
from review_engine.utils.retry import RetryPolicy

logger = get_logger(__name__)


class ReassignmentService:
    """Replaces expired assignments with fresh ones for new reviewers.

    A replacement never goes to anyone who ever held an assignment for that
    submission, and each expired row is replaced at most once.
    """

    def __init__(self, store: AssignmentStore = None, resolver: EligibilityResolver = None,
                 selector: PanelSelector = None, notifier: Notifier = None,
                 settings: ContestSettingsProvider = None, retry_policy: RetryPolicy = None):
        self.store = store or AssignmentStore()
        self.resolver = resolver or EligibilityResolver()
        self.selector = selector or PanelSelector()
        self.notifier = notifier or Notifier()
        self.settings = settings or ContestSettingsProvider()
        self.retry_policy = retry_policy or RetryPolicy()

    def reassign_expired(self, now: datetime = None, assignment_ids: Iterable[int] = None) -> ReassignmentResult:
        """Replace expired, not-yet-replaced assignments.

        Without assignment_ids, every unreplaced expired assignment whose contest or
        verification is still running is considered.
        """
        now = now or datetime.utcnow()
        result = ReassignmentResult()

        with get_db() as db:
            candidates = self._unreplaced_expired(db, assignment_ids)

        for assignment_id in candidates:
            try:
                new_id = self._replace(result, assignment_id, None, now)
                if new_id:
                    result.reassigned += 1
                    result.new_assignment_ids.append(new_id)
            except ConflictError as e:
                result.skipped += 1
                logger.info(f"Assignment {assignment_id} already replaced: {e.message}")
            except Exception as e:
                result.error(f"Assignment {assignment_id}: {str(e)}")
                logger.error(f"Error reassigning assignment {assignment_id}: {str(e)}")

        if candidates:
            logger.info(
                f"Reassignment: {result.reassigned} reassigned, {result.skipped} skipped, "
                f"{len(result.errors)} errors"
            )
        return result

    def reassign(self, assignment_id: int, new_reviewer_id: int = None, now: datetime = None) -> Dict:
        """Admin reassignment of one expired assignment, optionally to a named reviewer"""
        now = now or datetime.utcnow()

        with get_db() as db:
            assignment = db.get(Assignment, assignment_id)
            if not assignment:
                raise NotFoundError('Assignment not found', assignment_id=assignment_id)
            if assignment.status != AssignmentStatus.EXPIRED:
                raise InvalidStatusError(
                    'Only expired assignments can be reassigned',
                    assignment_id=assignment_id, status=assignment.status.value
                )
            if self.store.has_replacement(db, assignment_id):
                raise ConflictError('Assignment has already been reassigned', assignment_id=assignment_id)

        result = ReassignmentResult()
        new_id = self._replace(result, assignment_id, new_reviewer_id, now, enforce_phase=False)
        if not new_id:
            raise ValidationError(result.warnings[-1] if result.warnings else 'No eligible reviewer',
                                  assignment_id=assignment_id)

        with get_db() as db:
            replacement = db.get(Assignment, new_id)
            return {
                'success': True,
                'assignment_id': new_id,
                'replaces_assignment_id': assignment_id,
                'reviewer_id': replacement.reviewer_id,
                'deadline': replacement.deadline.isoformat(),
                'warnings': result.warnings,
            }

    def _replace(self, result: ReassignmentResult, assignment_id: int, new_reviewer_id: Optional[int],
                 now: datetime, enforce_phase: bool = True) -> Optional[int]:
        with get_db() as db:
            expired = db.get(Assignment, assignment_id)
            if expired.status != AssignmentStatus.EXPIRED or self.store.has_replacement(db, assignment_id):
                raise ConflictError('Assignment is not awaiting replacement', assignment_id=assignment_id)

            submission = db.get(Submission, expired.submission_id)
            policy = MODE_POLICIES[expired.mode]

            if enforce_phase and not self._still_applicable(db, expired, submission):
                result.skipped += 1
                result.warn(f"Assignment {assignment_id} skipped: review round no longer active")
                return None

            excluded = self.resolver.historical_reviewer_ids(db, submission.id)
            if policy.blacklist_expired:
                excluded |= self.resolver.blacklisted_reviewer_ids(db, now)
            if expired.verification_request_id:
                excluded |= self._authors_excluded_for_request(db, expired.verification_request_id)

            pool = self.resolver.resolve(db, submission.contest_id, submission.user_id, excluded, policy)
            deadline_days = self.settings.get(submission.contest_id).deadline_days
            mode = expired.mode
            request_id = expired.verification_request_id
            is_control = expired.is_control
            submission_id = submission.id

            if new_reviewer_id is not None:
                if new_reviewer_id == submission.user_id:
                    raise ValidationError('Reviewer cannot review their own submission',
                                          reviewer_id=new_reviewer_id)
                chosen = next((r for r in pool if r.id == new_reviewer_id), None)
                if chosen is None:
                    raise ValidationError('Reviewer is not eligible for this submission',
                                          reviewer_id=new_reviewer_id)
            else:
                chosen = self.selector.pick_one(pool)

        if chosen is None:
            message = f"No eligible reviewer to replace assignment {assignment_id} on submission {submission_id}"
            result.warn(message)
            logger.warning(message)
            return None

        ids = self.retry_policy.call(
            self.store.create_panel, chosen.id,
            [PanelItem(submission_id=submission_id, is_control=is_control)],
            mode, deadline_days, now,
            verification_request_id=request_id,
            replaces_assignment_id=assignment_id,
            label=f'replacement for assignment {assignment_id}'
        )

        logger.info(f"Reassigned assignment {assignment_id} to reviewer {chosen.id} as assignment {ids[0]}")
        self.notifier.send_assignment_notification(chosen.id, 1, now + timedelta(days=deadline_days))
        return ids[0]

    def _still_applicable(self, db: Session, expired: Assignment, submission: Submission) -> bool:
        if expired.mode == AssignmentMode.REVIEW:
            contest = db.get(Contest, submission.contest_id)
            return contest.phase == ContestPhase.PEER_REVIEW
        request = db.get(Submission, expired.verification_request_id or submission.id)
        return request is not None and request.status == SubmissionStatus.PEER_VERIFICATION_PENDING

    def _authors_excluded_for_request(self, db: Session, request_id: int) -> set:
        """The verified submission's author never sees its panel, even as a control reviewer"""
        request = db.get(Submission, request_id)
        return {request.user_id} if request else set()

    def _unreplaced_expired(self, db: Session, assignment_ids: Iterable[int] = None) -> List[int]:
        replaced = db.query(Assignment.replaces_assignment_id).filter(
            Assignment.replaces_assignment_id.isnot(None)
        )
        query = db.query(Assignment.id).filter(
            Assignment.status == AssignmentStatus.EXPIRED,
            Assignment.id.notin_(replaced)
        )
        if assignment_ids is not None:
            ids = list(assignment_ids)
            if not ids:
                return []
            return [row[0] for row in query.filter(Assignment.id.in_(ids)).order_by(Assignment.id).all()]

        active_review = db.query(Submission.id).join(Contest, Submission.contest_id == Contest.id).filter(
            Contest.phase == ContestPhase.PEER_REVIEW
        )
        active_requests = db.query(Submission.id).filter(
            Submission.status == SubmissionStatus.PEER_VERIFICATION_PENDING
        )
        query = query.filter(
            ((Assignment.mode == AssignmentMode.REVIEW) & Assignment.submission_id.in_(active_review))
            | ((Assignment.mode == AssignmentMode.VERIFICATION)
               & Assignment.verification_request_id.in_(active_requests))
        )
        return [row[0] for row in query.order_by(Assignment.id).all()]
