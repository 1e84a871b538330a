from datetime import datetime, timedelta
from typing import Tuple

from sqlalchemy import func

from config.config import Config
from review_engine.database import get_db
from review_engine.models import Assignment
from review_engine.models.assignment import AssignmentStatus
from review_engine.results import SweepResult, WarningResult
from review_engine.services.assignment_store import AssignmentStore
from review_engine.services.notification_service import Notifier
from review_engine.services.reassignment_service import ReassignmentService
from review_engine.services.verification_results_service import VerificationResultsService
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


class DeadlineSweeper:
    """Scheduled driver of the assignment state machine.

    Every pass is safe to re-run from scratch; status guards make repeats no-ops.
    """

    def __init__(self, store: AssignmentStore = None, reassignment: ReassignmentService = None,
                 verification_results: VerificationResultsService = None, notifier: Notifier = None):
        self.store = store or AssignmentStore()
        self.notifier = notifier or Notifier()
        self.reassignment = reassignment or ReassignmentService(store=self.store, notifier=self.notifier)
        self.verification_results = verification_results or VerificationResultsService(
            store=self.store, notifier=self.notifier
        )

    def expire_lapsed(self, now: datetime = None) -> SweepResult:
        now = now or datetime.utcnow()
        result = SweepResult()

        expired = self.store.expire_lapsed(now, penalty=Config.INTEGRITY_PENALTY_EXPIRED)
        result.expired = len(expired)
        result.expired_assignment_ids = [e.id for e in expired]

        if expired:
            logger.info(f"Expired {len(expired)} assignments past their deadline")
        return result

    def run_sweep(self, now: datetime = None) -> SweepResult:
        """Expire, then reassign, then time out stuck verifications"""
        now = now or datetime.utcnow()
        logger.info(f"Starting deadline sweep at {now}")

        try:
            result = self.expire_lapsed(now)
        except Exception as e:
            logger.error(f"Error expiring lapsed assignments: {str(e)}")
            result = SweepResult()
            result.error(f"Expiry failed: {str(e)}")
            return result

        try:
            result.reassignment = self.reassignment.reassign_expired(now)
            result.errors.extend(result.reassignment.errors)
            result.warnings.extend(result.reassignment.warnings)
        except Exception as e:
            logger.error(f"Error reassigning expired assignments: {str(e)}")
            result.error(f"Reassignment failed: {str(e)}")

        try:
            incomplete = self.verification_results.check_incomplete(now)
            result.verifications_resolved = incomplete['resolved']
            result.verifications_refunded = incomplete['refunded']
            result.errors.extend(incomplete['errors'])
        except Exception as e:
            logger.error(f"Error checking incomplete verifications: {str(e)}")
            result.error(f"Verification timeout check failed: {str(e)}")

        logger.info(
            f"Deadline sweep finished: {result.expired} expired, "
            f"{result.reassignment.reassigned if result.reassignment else 0} reassigned, "
            f"{len(result.errors)} errors"
        )
        return result

    def send_deadline_warnings(self, now: datetime = None) -> WarningResult:
        """One reminder per reviewer with work due 23-24 hours from now"""
        now = now or datetime.utcnow()
        return self._remind(now, Config.WARNING_WINDOW_HOURS, self.notifier.send_deadline_warning)

    def send_final_reminders(self, now: datetime = None) -> WarningResult:
        """Last call 1-2 hours before the deadline"""
        now = now or datetime.utcnow()
        return self._remind(now, Config.FINAL_REMINDER_WINDOW_HOURS, self.notifier.send_final_reminder)

    def _remind(self, now: datetime, window: Tuple[int, int], send) -> WarningResult:
        result = WarningResult()
        start = now + timedelta(hours=window[0])
        end = now + timedelta(hours=window[1])

        with get_db() as db:
            grouped = db.query(
                Assignment.reviewer_id,
                func.count(Assignment.id),
                func.min(Assignment.deadline)
            ).filter(
                Assignment.status == AssignmentStatus.PENDING,
                Assignment.deadline > start,
                Assignment.deadline <= end
            ).group_by(Assignment.reviewer_id).order_by(Assignment.reviewer_id).all()

        for reviewer_id, count, earliest in grouped:
            if send(reviewer_id, count, earliest, window[1]):
                result.reviewers_notified += 1
                result.assignments_covered += count
            else:
                result.error(f"Could not queue reminder for reviewer {reviewer_id}")

        if grouped:
            logger.info(
                f"Queued {result.reviewers_notified} reminders covering "
                f"{result.assignments_covered} assignments ({window[0]}-{window[1]}h window)"
            )
        return result
