import time
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import update

from config.config import Config
from review_engine.database import get_db
from review_engine.integrations import SendGridClient, IdentityClient
from review_engine.models import NotificationJob
from review_engine.models.notification_job import NotificationKind, NotificationStatus
from review_engine.results import DispatchResult
from review_engine.utils.logger import get_logger
from review_engine.utils.retry import RetryPolicy

logger = get_logger(__name__)


def _fmt(value: datetime) -> str:
    return value.strftime('%B %d, %Y at %I:%M %p UTC')


class Notifier:
    """Decides what to tell whom; writes outbox rows only.

    Call after the business transaction has committed. A failure to enqueue is
    logged and never propagates back into engine state.
    """

    def enqueue(self, kind: NotificationKind, recipient_id: int, **payload) -> bool:
        try:
            with get_db() as db:
                db.add(NotificationJob(kind=kind, recipient_id=recipient_id, payload=payload))
            return True
        except Exception as e:
            logger.error(f"Error enqueueing {kind.value} notification for user {recipient_id}: {str(e)}")
            return False

    def send_assignment_notification(self, reviewer_id: int, count: int, deadline: datetime):
        return self.enqueue(NotificationKind.ASSIGNMENT, reviewer_id,
                            count=count, deadline=_fmt(deadline))

    def send_deadline_warning(self, reviewer_id: int, count: int, deadline: datetime, hours_left: int):
        return self.enqueue(NotificationKind.DEADLINE_WARNING, reviewer_id,
                            count=count, deadline=_fmt(deadline), hours_left=hours_left)

    def send_final_reminder(self, reviewer_id: int, count: int, deadline: datetime, hours_left: int):
        return self.enqueue(NotificationKind.FINAL_REMINDER, reviewer_id,
                            count=count, deadline=_fmt(deadline), hours_left=hours_left)

    def send_disqualification(self, user_id: int, completed: int, required: int):
        return self.enqueue(NotificationKind.DISQUALIFICATION, user_id,
                            completed=completed, required=required)

    def send_results_available(self, user_id: int, submission_code: str, overall: float, rank: int = None):
        return self.enqueue(NotificationKind.RESULTS_AVAILABLE, user_id,
                            submission_code=submission_code, overall=overall, rank=rank)

    def send_finalist(self, user_id: int, submission_code: str):
        return self.enqueue(NotificationKind.FINALIST, user_id, submission_code=submission_code)

    def send_verification_complete(self, user_id: int, submission_code: str, outcome: str,
                                   reinstate_percentage: float, admin_override: bool = False):
        payload = dict(submission_code=submission_code, outcome=outcome,
                       reinstate_percentage=reinstate_percentage)
        if admin_override:
            payload['admin_override'] = True
        return self.enqueue(NotificationKind.VERIFICATION_COMPLETE, user_id, **payload)

    def send_verification_incomplete(self, user_id: int, submission_code: str, refunded: bool):
        return self.enqueue(NotificationKind.VERIFICATION_INCOMPLETE, user_id,
                            submission_code=submission_code, refunded=refunded)


class NotificationDispatcher:
    """Drains the outbox through SendGrid"""

    def __init__(self, sendgrid: SendGridClient = None, identity: IdentityClient = None,
                 retry_policy: RetryPolicy = None, interval_seconds: float = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.sendgrid = sendgrid or SendGridClient()
        self.identity = identity or IdentityClient()
        self.retry_policy = retry_policy or RetryPolicy()
        self.interval_seconds = (interval_seconds if interval_seconds is not None
                                 else Config.EMAIL_SEND_INTERVAL_SECONDS)
        self.sleep = sleep

    def dispatch_pending(self, limit: int = None, now: datetime = None) -> DispatchResult:
        result = DispatchResult()
        limit = limit or Config.NOTIFICATION_BATCH_SIZE
        now = now or datetime.utcnow()

        self._recover_stale_claims(result, now)

        with get_db() as db:
            job_ids = [row[0] for row in db.query(NotificationJob.id).filter(
                NotificationJob.status == NotificationStatus.QUEUED
            ).order_by(NotificationJob.id).limit(limit).all()]

        for index, job_id in enumerate(job_ids):
            job = self._claim(job_id, now)
            if job is None:
                continue

            if index and self.interval_seconds:
                self.sleep(self.interval_seconds)

            try:
                self._deliver(job)
                self._finish(job_id, NotificationStatus.SENT)
                result.sent += 1
            except Exception as e:
                logger.error(f"Error sending {job.kind.value} notification {job_id}: {str(e)}")
                self._finish(job_id, NotificationStatus.FAILED, error=str(e))
                result.failed += 1
                result.error(f"Notification {job_id}: {str(e)}")

        if job_ids:
            logger.info(f"Dispatched notifications: {result.sent} sent, {result.failed} failed")
        return result

    def _recover_stale_claims(self, result: DispatchResult, now: datetime):
        """Jobs stuck in SENDING past the lease go back to QUEUED, or FAILED once out of attempts.

        Delivery is at least once: a run killed after SendGrid accepted the mail
        but before recording it will send that mail again.
        """
        cutoff = now - timedelta(minutes=Config.NOTIFICATION_CLAIM_LEASE_MINUTES)
        stale = (
            NotificationJob.status == NotificationStatus.SENDING,
            NotificationJob.claimed_at < cutoff,
        )

        with get_db() as db:
            failed = db.execute(
                update(NotificationJob)
                .where(*stale, NotificationJob.attempts >= Config.NOTIFICATION_MAX_ATTEMPTS)
                .values(status=NotificationStatus.FAILED, last_error='Delivery interrupted too many times')
                .execution_options(synchronize_session=False)
            ).rowcount
            requeued = db.execute(
                update(NotificationJob)
                .where(*stale)
                .values(status=NotificationStatus.QUEUED, claimed_at=None)
                .execution_options(synchronize_session=False)
            ).rowcount

        if failed or requeued:
            result.failed += failed
            result.requeued += requeued
            logger.warning(f"Recovered interrupted notifications: {requeued} requeued, {failed} failed")

    def _claim(self, job_id: int, now: datetime = None):
        """QUEUED -> SENDING; None when another dispatcher claimed it first"""
        with get_db() as db:
            claimed = db.execute(
                update(NotificationJob)
                .where(NotificationJob.id == job_id, NotificationJob.status == NotificationStatus.QUEUED)
                .values(status=NotificationStatus.SENDING, attempts=NotificationJob.attempts + 1,
                        claimed_at=now or datetime.utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount
            if not claimed:
                return None
            return db.get(NotificationJob, job_id)

    def _finish(self, job_id: int, status: NotificationStatus, error: str = None):
        with get_db() as db:
            job = db.get(NotificationJob, job_id)
            job.status = status
            job.last_error = error[:500] if error else None
            if status == NotificationStatus.SENT:
                job.sent_at = datetime.utcnow()

    def _deliver(self, job: NotificationJob):
        user = self.retry_policy.call(self.identity.get_user, job.recipient_id, label='identity lookup')
        if not user or not user.get('email'):
            raise LookupError(f"No email on record for user {job.recipient_id}")

        send = self._sender(job.kind)
        response = self.retry_policy.call(send, user['email'], **(job.payload or {}), label='sendgrid')
        if response is None:
            raise RuntimeError('Email client not configured')
        return response

    def _sender(self, kind: NotificationKind) -> Callable:
        senders = {
            NotificationKind.ASSIGNMENT: self.sendgrid.send_assignment_email,
            NotificationKind.DEADLINE_WARNING: self.sendgrid.send_deadline_warning_email,
            NotificationKind.FINAL_REMINDER: self.sendgrid.send_deadline_warning_email,
            NotificationKind.DISQUALIFICATION: self.sendgrid.send_disqualification_email,
            NotificationKind.RESULTS_AVAILABLE: self.sendgrid.send_results_email,
            NotificationKind.FINALIST: self.sendgrid.send_finalist_email,
            NotificationKind.VERIFICATION_COMPLETE: self.sendgrid.send_verification_result_email,
            NotificationKind.VERIFICATION_INCOMPLETE: self._send_incomplete,
        }
        return senders[kind]

    def _send_incomplete(self, to_email: str, submission_code: str, refunded: bool):
        return self.sendgrid.send_verification_result_email(
            to_email, submission_code, 'INCOMPLETE', refunded=refunded
        )
