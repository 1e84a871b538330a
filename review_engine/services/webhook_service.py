from datetime import datetime
from sqlalchemy import update
from review_engine.database import get_db
from review_engine.errors import NotFoundError, ValidationError
from review_engine.models import Payment, Submission
from review_engine.models.payment import PaymentPurpose, PaymentStatus
from review_engine.models.submission import SubmissionStatus
from review_engine.services.assignment_service import AssignmentService
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


class WebhookService:
    """Service for handling payment webhook events.

    Stripe delivers at least once, so every handler checks current state first.
    """

    def __init__(self, assignment_service: AssignmentService = None):
        self.assignment_service = assignment_service or AssignmentService()

    def process_stripe_event(self, event: dict, now: datetime = None) -> dict:
        """Process Stripe webhook events"""
        event_type = event.get('type')
        data = event.get('data', {}).get('object', {})

        logger.info(f"Processing Stripe event: {event_type}")

        if event_type == 'checkout.session.completed':
            return self._checkout_completed(data, now or datetime.utcnow())

        elif event_type == 'checkout.session.expired':
            return self._checkout_expired(data)

        return {'event_type': event_type, 'processed': False}

    def _checkout_completed(self, session: dict, now: datetime) -> dict:
        metadata = session.get('metadata') or {}
        submission_id = _int_or_none(metadata.get('submission_id'))
        payment_id = _int_or_none(metadata.get('payment_id'))
        if not submission_id:
            raise ValidationError('Checkout session has no submission_id metadata')

        with get_db() as db:
            payment = self._find_payment(db, payment_id, submission_id, metadata.get('purpose'))
            payment_id = payment.id
            purpose = payment.purpose

            if payment.status == PaymentStatus.PAID:
                submission = db.get(Submission, submission_id)
                awaiting_panel = (purpose == PaymentPurpose.PEER_VERIFICATION and submission is not None
                                  and submission.status == SubmissionStatus.PEER_VERIFICATION_PENDING)
                if not awaiting_panel:
                    logger.info(f"Payment {payment_id} already processed, ignoring duplicate event")
                    return {'payment_id': payment_id, 'status': 'already_processed'}
                response = {'payment_id': payment_id, 'status': 'already_processed',
                            'submission_status': submission.status.value}
                moved = True
            else:
                payment.status = PaymentStatus.PAID
                payment.paid_at = now
                payment.external_ref = session.get('id')
                payment.payment_intent_id = session.get('payment_intent')

                if purpose == PaymentPurpose.PEER_VERIFICATION:
                    from_statuses = [SubmissionStatus.ELIMINATED, SubmissionStatus.PEER_VERIFICATION_PENDING]
                    to_status = SubmissionStatus.PEER_VERIFICATION_PENDING
                else:
                    from_statuses = [SubmissionStatus.PENDING_PAYMENT]
                    to_status = SubmissionStatus.SUBMITTED

                moved = db.execute(
                    update(Submission)
                    .where(Submission.id == submission_id, Submission.status.in_(from_statuses))
                    .values(status=to_status)
                    .execution_options(synchronize_session=False)
                ).rowcount
                if not moved:
                    logger.warning(f"Submission {submission_id} not in an expected status for {purpose.value} payment")
                response = {'payment_id': payment_id, 'status': 'paid', 'submission_status': to_status.value}

        if response['status'] == 'paid':
            logger.info(f"Payment {payment_id} for submission {submission_id} marked as paid")
        else:
            # A previous delivery recorded the payment but failed before the panel was complete
            logger.info(f"Payment {payment_id} already processed, topping up verification panel")

        if purpose == PaymentPurpose.PEER_VERIFICATION and moved:
            result = self.assignment_service.assign_verification_panel(submission_id, now)
            response['assignment'] = result.to_dict()

        return response

    def _checkout_expired(self, session: dict) -> dict:
        metadata = session.get('metadata') or {}
        payment_id = _int_or_none(metadata.get('payment_id'))
        if not payment_id:
            return {'processed': False}

        with get_db() as db:
            updated = db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING)
                .values(status=PaymentStatus.FAILED)
                .execution_options(synchronize_session=False)
            ).rowcount

        if updated:
            logger.info(f"Payment {payment_id} marked as failed after checkout expired")
        return {'payment_id': payment_id, 'status': 'failed' if updated else 'unchanged'}

    def _find_payment(self, db, payment_id, submission_id, purpose) -> Payment:
        if payment_id:
            payment = db.get(Payment, payment_id)
        else:
            query = db.query(Payment).filter(Payment.submission_id == submission_id)
            if purpose:
                try:
                    query = query.filter(Payment.purpose == PaymentPurpose(purpose))
                except ValueError:
                    raise ValidationError(f'Unknown payment purpose: {purpose}')
            payment = query.order_by(Payment.id.desc()).first()

        if not payment or payment.submission_id != submission_id:
            raise NotFoundError('Payment not found', payment_id=payment_id, submission_id=submission_id)
        return payment


def _int_or_none(value):
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
