"""Peer verification outcomes.

Reviewers vote ELIMINATE or REINSTATE on an AI-eliminated submission. A 70%
supermajority either way decides it; anything less leaves the AI decision in
place. Control answers and agreement with the majority feed integrity scores.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from config.config import Config
from review_engine.database import get_db
from review_engine.errors import ConflictError, InvalidStatusError, NotFoundError, ValidationError
from review_engine.integrations import StripeClient
from review_engine.models import Assignment, Payment, Review, Submission, User
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.models.payment import PaymentPurpose, PaymentStatus
from review_engine.models.review import ReviewDecision
from review_engine.models.submission import SubmissionStatus
from review_engine.results import VerificationOutcome
from review_engine.services.assignment_store import AssignmentStore
from review_engine.services.notification_service import Notifier
from review_engine.utils.logger import get_logger
from review_engine.utils.retry import RetryPolicy

logger = get_logger(__name__)

DECISION_THRESHOLD = 0.70
MINORITY_THRESHOLD = 0.30

CONTROL_MATCH_BONUS = 10
CONTROL_MISMATCH_PENALTY = -5
MAJORITY_BONUS = 5
SMALL_MINORITY_PENALTY = -3

OUTCOME_REINSTATED = 'REINSTATED'
OUTCOME_ELIMINATED_CONFIRMED = 'ELIMINATED_CONFIRMED'
OUTCOME_AI_DECISION_UPHELD = 'AI_DECISION_UPHELD'
OUTCOME_INCOMPLETE = 'INCOMPLETE'

OVERRIDE_MIN_JUSTIFICATION = 20
OVERRIDE_OUTCOMES = {
    'REINSTATED': SubmissionStatus.REINSTATED,
    'ELIMINATED': SubmissionStatus.ELIMINATED,
    OUTCOME_AI_DECISION_UPHELD: SubmissionStatus.ELIMINATED,
}
OVERRIDE_EMAIL_OUTCOMES = {
    'REINSTATED': OUTCOME_REINSTATED,
    'ELIMINATED': OUTCOME_ELIMINATED_CONFIRMED,
    OUTCOME_AI_DECISION_UPHELD: OUTCOME_AI_DECISION_UPHELD,
}

CONTROL_EXPECTATIONS = {
    SubmissionStatus.SUBMITTED: ReviewDecision.REINSTATE,
    SubmissionStatus.ELIMINATED_ACCEPTED: ReviewDecision.ELIMINATE,
}


def decide_outcome(reinstate_votes: int, eliminate_votes: int) -> Tuple[str, SubmissionStatus]:
    total = reinstate_votes + eliminate_votes
    if total and reinstate_votes / total >= DECISION_THRESHOLD:
        return OUTCOME_REINSTATED, SubmissionStatus.REINSTATED
    if total and eliminate_votes / total >= DECISION_THRESHOLD:
        return OUTCOME_ELIMINATED_CONFIRMED, SubmissionStatus.ELIMINATED
    return OUTCOME_AI_DECISION_UPHELD, SubmissionStatus.ELIMINATED


def target_vote_delta(decision: ReviewDecision, reinstate_votes: int, eliminate_votes: int) -> int:
    """+5 for siding with the majority, -3 for a minority under 30%, else 0"""
    total = reinstate_votes + eliminate_votes
    if not total or reinstate_votes == eliminate_votes:
        return 0
    majority = ReviewDecision.REINSTATE if reinstate_votes > eliminate_votes else ReviewDecision.ELIMINATE
    if decision == majority:
        return MAJORITY_BONUS
    own_votes = reinstate_votes if decision == ReviewDecision.REINSTATE else eliminate_votes
    if own_votes / total < MINORITY_THRESHOLD:
        return SMALL_MINORITY_PENALTY
    return 0


class VerificationResultsService:

    def __init__(self, store: AssignmentStore = None, notifier: Notifier = None,
                 stripe: StripeClient = None, retry_policy: RetryPolicy = None):
        self.store = store or AssignmentStore()
        self.notifier = notifier or Notifier()
        self.stripe = stripe or StripeClient()
        self.retry_policy = retry_policy or RetryPolicy()

    def finalize_if_complete(self, request_id: int, now: datetime = None) -> Optional[VerificationOutcome]:
        """Compute results once no target obligation is outstanding"""
        with get_db() as db:
            submission = db.get(Submission, request_id)
            if not submission or submission.status != SubmissionStatus.PEER_VERIFICATION_PENDING:
                return None
            if self._has_outstanding(db, request_id):
                return None
            if not self._completed_target_reviews(db, request_id):
                return None

        try:
            return self.compute_results(request_id, now=now)
        except ConflictError:
            logger.info(f"Verification {request_id} already resolved by another worker")
            return None

    def compute_results(self, request_id: int, now: datetime = None) -> VerificationOutcome:
        now = now or datetime.utcnow()

        with get_db() as db:
            submission = db.get(Submission, request_id)
            if not submission:
                raise NotFoundError('Submission not found', submission_id=request_id)
            if submission.status != SubmissionStatus.PEER_VERIFICATION_PENDING:
                raise InvalidStatusError(
                    'Submission is not awaiting peer verification',
                    submission_id=request_id, status=submission.status.value
                )

            decisions = self._target_decisions(db, request_id)
            reinstate = sum(1 for _, d in decisions if d == ReviewDecision.REINSTATE)
            eliminate = sum(1 for _, d in decisions if d == ReviewDecision.ELIMINATE)
            total = reinstate + eliminate
            outcome, new_status = decide_outcome(reinstate, eliminate)

            result = VerificationOutcome(
                submission_id=request_id,
                outcome=outcome,
                reinstate_votes=reinstate,
                eliminate_votes=eliminate,
                total_votes=total,
                reinstate_percentage=round(100.0 * reinstate / total, 2) if total else 0.0,
                eliminate_percentage=round(100.0 * eliminate / total, 2) if total else 0.0,
            )

            self._resolve_submission(db, request_id, new_status, {
                'outcome': outcome,
                'reinstate_votes': reinstate,
                'eliminate_votes': eliminate,
                'total_votes': total,
                'reinstate_percentage': result.reinstate_percentage,
                'eliminate_percentage': result.eliminate_percentage,
                'completed_at': now.isoformat(),
            })

            deltas = self._integrity_deltas(db, request_id, decisions, reinstate, eliminate)
            self.store.apply_integrity_deltas(db, deltas)
            self._update_qualified_evaluators(db, deltas.keys())

            author_id = submission.user_id
            code = submission.submission_code

        logger.info(
            f"Verification {request_id} resolved as {outcome} "
            f"({reinstate} reinstate / {eliminate} eliminate)"
        )
        self.notifier.send_verification_complete(author_id, code, outcome, result.reinstate_percentage)
        return result

    def check_incomplete(self, now: datetime = None) -> Dict:
        """Resolve verifications stuck longer than the timeout.

        Enough completed reviews means results are computed anyway; otherwise the
        submission goes back to ELIMINATED and the fee is refunded.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=Config.VERIFICATION_TIMEOUT_DAYS)
        summary = {'resolved': 0, 'refunded': 0, 'errors': []}

        with get_db() as db:
            started = dict(db.query(
                Assignment.verification_request_id, func.min(Assignment.assigned_at)
            ).join(
                Submission, Assignment.verification_request_id == Submission.id
            ).filter(
                Submission.status == SubmissionStatus.PEER_VERIFICATION_PENDING,
                Assignment.mode == AssignmentMode.VERIFICATION
            ).group_by(Assignment.verification_request_id).all())

            # Paid verifications that never got a single reviewer
            unassigned = db.query(Submission.id, Payment.paid_at).join(
                Payment, Payment.submission_id == Submission.id
            ).filter(
                Submission.status == SubmissionStatus.PEER_VERIFICATION_PENDING,
                Payment.purpose == PaymentPurpose.PEER_VERIFICATION,
                Payment.paid_at.isnot(None)
            ).all()
            for submission_id, paid_at in unassigned:
                started.setdefault(submission_id, paid_at)

            stale = sorted(rid for rid, since in started.items() if since and since < cutoff)
            counts = {rid: self._completed_target_reviews(db, rid) for rid in stale}

        for request_id in stale:
            try:
                if counts[request_id] >= Config.MIN_VERIFICATION_REVIEWS:
                    self.compute_results(request_id, now=now)
                    summary['resolved'] += 1
                else:
                    self._resolve_incomplete(request_id, counts[request_id], now)
                    summary['refunded'] += 1
            except ConflictError:
                logger.info(f"Verification {request_id} already resolved by another worker")
            except Exception as e:
                logger.error(f"Error resolving stale verification {request_id}: {str(e)}")
                summary['errors'].append(f"Verification {request_id}: {str(e)}")

        return summary

    def _resolve_incomplete(self, request_id: int, completed: int, now: datetime):
        with get_db() as db:
            submission = db.get(Submission, request_id)
            self._resolve_submission(db, request_id, SubmissionStatus.ELIMINATED, {
                'outcome': OUTCOME_INCOMPLETE,
                'completed_reviews': completed,
                'required_reviews': Config.MIN_VERIFICATION_REVIEWS,
                'completed_at': now.isoformat(),
            })

            outstanding = [row[0] for row in db.query(Assignment.id).filter(
                Assignment.verification_request_id == request_id,
                Assignment.status == AssignmentStatus.PENDING
            ).all()]
            self.store.expire_outstanding(db, outstanding, now)

            payment = db.query(Payment).filter(
                Payment.submission_id == request_id,
                Payment.purpose == PaymentPurpose.PEER_VERIFICATION,
                Payment.status == PaymentStatus.PAID
            ).first()
            payment_id = payment.id if payment else None
            intent_id = payment.payment_intent_id if payment else None
            if payment:
                payment.status = PaymentStatus.REFUNDED
                payment.refunded_at = now

            author_id = submission.user_id
            code = submission.submission_code

        logger.warning(
            f"Verification {request_id} timed out with {completed} reviews; "
            f"returned to ELIMINATED"
        )

        if intent_id:
            self._refund(payment_id, intent_id)

        self.notifier.send_verification_incomplete(author_id, code, refunded=payment_id is not None)

    def override(self, submission_id: int, outcome: str, justification: str, admin_id: int,
                 now: datetime = None) -> Dict:
        """Admin decision that replaces whatever the panel decided, or has yet to decide.

        Open panel work on a pending verification is closed without penalty. The
        panel's original tally stays in peer_verification_result next to the override.
        """
        now = now or datetime.utcnow()
        outcome = str(outcome or '').upper()
        if outcome not in OVERRIDE_OUTCOMES:
            raise ValidationError(
                f"Outcome must be one of {', '.join(sorted(OVERRIDE_OUTCOMES))}", outcome=outcome
            )
        justification = (justification or '').strip()
        if len(justification) < OVERRIDE_MIN_JUSTIFICATION:
            raise ValidationError(
                f'Justification must be at least {OVERRIDE_MIN_JUSTIFICATION} characters'
            )
        new_status = OVERRIDE_OUTCOMES[outcome]

        with get_db() as db:
            submission = db.get(Submission, submission_id)
            if not submission:
                raise NotFoundError('Submission not found', submission_id=submission_id)
            previous_status = submission.status
            previous_result = dict(submission.peer_verification_result or {})
            if not self._overridable(previous_status, previous_result):
                raise InvalidStatusError(
                    'Only peer verification submissions can be overridden',
                    submission_id=submission_id, status=previous_status.value
                )

            updated = db.execute(
                update(Submission)
                .where(Submission.id == submission_id, Submission.status == previous_status)
                .values(status=new_status, peer_verification_result={
                    **previous_result,
                    'admin_override': True,
                    'admin_override_outcome': outcome,
                    'admin_override_justification': justification,
                    'admin_override_by': admin_id,
                    'admin_override_at': now.isoformat(),
                    'status_before_override': previous_status.value,
                })
                .execution_options(synchronize_session=False)
            ).rowcount
            if not updated:
                raise ConflictError('Submission changed during override', submission_id=submission_id)

            closed = []
            if previous_status == SubmissionStatus.PEER_VERIFICATION_PENDING:
                outstanding = [row[0] for row in db.query(Assignment.id).filter(
                    Assignment.verification_request_id == submission_id,
                    Assignment.status == AssignmentStatus.PENDING
                ).all()]
                closed = self.store.expire_outstanding(db, outstanding, now)

            author_id = submission.user_id
            code = submission.submission_code

        logger.warning(
            f"Admin {admin_id} overrode verification of submission {submission_id}: "
            f"{previous_status.value} -> {new_status.value} ({outcome})"
        )
        self.notifier.send_verification_complete(
            author_id, code, OVERRIDE_EMAIL_OUTCOMES[outcome],
            previous_result.get('reinstate_percentage'), admin_override=True
        )
        return {
            'success': True,
            'submission_id': submission_id,
            'outcome': outcome,
            'previous_status': previous_status.value,
            'new_status': new_status.value,
            'assignments_closed': len(closed),
        }

    def _overridable(self, status: SubmissionStatus, result: Dict) -> bool:
        if status in (SubmissionStatus.PEER_VERIFICATION_PENDING, SubmissionStatus.REINSTATED):
            return True
        # An ELIMINATED entry only counts once it went through verification
        return status == SubmissionStatus.ELIMINATED and bool(result)

    def _refund(self, payment_id: int, intent_id: str):
        try:
            refund = self.retry_policy.call(
                self.stripe.create_refund, intent_id,
                reason='requested_by_customer',
                idempotency_key=f'verification-refund-{payment_id}',
                label='stripe refund'
            )
            with get_db() as db:
                payment = db.get(Payment, payment_id)
                payment.refund_id = getattr(refund, 'id', None)
            logger.info(f"Refunded payment {payment_id}")
        except Exception as e:
            logger.error(f"Error refunding payment {payment_id}: {str(e)}")

    def _resolve_submission(self, db: Session, request_id: int, new_status: SubmissionStatus, result: Dict):
        updated = db.execute(
            update(Submission)
            .where(
                Submission.id == request_id,
                Submission.status == SubmissionStatus.PEER_VERIFICATION_PENDING
            )
            .values(status=new_status, peer_verification_result=result)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not updated:
            raise ConflictError('Verification already resolved', submission_id=request_id)

    def _has_outstanding(self, db: Session, request_id: int) -> bool:
        pending = db.query(Assignment.id).filter(
            Assignment.submission_id == request_id,
            Assignment.verification_request_id == request_id,
            Assignment.status == AssignmentStatus.PENDING
        ).first()
        if pending:
            return True

        replaced = db.query(Assignment.replaces_assignment_id).filter(
            Assignment.replaces_assignment_id.isnot(None)
        )
        unreplaced = db.query(Assignment.id).filter(
            Assignment.submission_id == request_id,
            Assignment.verification_request_id == request_id,
            Assignment.status == AssignmentStatus.EXPIRED,
            Assignment.id.notin_(replaced)
        ).first()
        return unreplaced is not None

    def _completed_target_reviews(self, db: Session, request_id: int) -> int:
        return db.query(Assignment).filter(
            Assignment.submission_id == request_id,
            Assignment.verification_request_id == request_id,
            Assignment.status == AssignmentStatus.DONE
        ).count()

    def _target_decisions(self, db: Session, request_id: int) -> List[Tuple[int, ReviewDecision]]:
        return db.query(Assignment.reviewer_id, Review.decision).join(
            Review, Review.assignment_id == Assignment.id
        ).filter(
            Assignment.submission_id == request_id,
            Assignment.verification_request_id == request_id,
            Assignment.status == AssignmentStatus.DONE
        ).all()

    def _integrity_deltas(self, db: Session, request_id: int, decisions, reinstate: int,
                          eliminate: int) -> Dict[int, int]:
        deltas: Dict[int, int] = {}

        for reviewer_id, decision in decisions:
            deltas[reviewer_id] = deltas.get(reviewer_id, 0) + target_vote_delta(decision, reinstate, eliminate)

        controls = db.query(Assignment.reviewer_id, Review.decision, Submission.status).join(
            Review, Review.assignment_id == Assignment.id
        ).join(
            Submission, Assignment.submission_id == Submission.id
        ).filter(
            Assignment.verification_request_id == request_id,
            Assignment.submission_id != request_id,
            Assignment.status == AssignmentStatus.DONE
        ).all()

        for reviewer_id, decision, control_status in controls:
            expected = CONTROL_EXPECTATIONS.get(control_status)
            if expected is None:
                continue
            delta = CONTROL_MATCH_BONUS if decision == expected else CONTROL_MISMATCH_PENALTY
            deltas[reviewer_id] = deltas.get(reviewer_id, 0) + delta

        return deltas

    def _update_qualified_evaluators(self, db: Session, reviewer_ids):
        for user in db.query(User).filter(User.id.in_(list(reviewer_ids))).populate_existing().all():
            completed = db.query(Assignment).filter(
                Assignment.reviewer_id == user.id,
                Assignment.mode == AssignmentMode.VERIFICATION,
                Assignment.status == AssignmentStatus.DONE
            ).count()
            user.qualified_evaluator = (
                completed >= Config.QUALIFIED_EVALUATOR_MIN_COMPLETED and user.integrity_score >= 0
            )
            if user.integrity_score < Config.INTEGRITY_FLAG_THRESHOLD:
                logger.warning(f"Reviewer {user.id} flagged for review: integrity score {user.integrity_score}")
