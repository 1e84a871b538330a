from unittest.mock import Mock, patch

import pytest

from conftest import NOW, make_contest, make_payment, make_population, make_submission, make_user
from review_engine.database import DatabaseManager
from review_engine.errors import ValidationError
from review_engine.models import Assignment, Payment, Submission
from review_engine.models.contest import ContestPhase
from review_engine.models.payment import PaymentPurpose, PaymentStatus
from review_engine.models.submission import SubmissionStatus
from review_engine.results import AssignmentResult
from review_engine.services.webhook_service import WebhookService


def _checkout_event(payment, event_type='checkout.session.completed'):
    return {
        'type': event_type,
        'data': {
            'object': {
                'id': 'cs_test_123',
                'payment_intent': 'pi_test_123',
                'metadata': {
                    'submission_id': str(payment.submission_id),
                    'payment_id': str(payment.id),
                },
            }
        }
    }


@pytest.fixture
def webhook_setup(db_setup):
    contest = make_contest(ContestPhase.AI_FILTERING)
    author = make_user('author')
    eliminated = make_submission(contest, author, SubmissionStatus.ELIMINATED)
    verification_payment = make_payment(eliminated, purpose=PaymentPurpose.PEER_VERIFICATION,
                                        status=PaymentStatus.PENDING, amount_cents=500)
    assignment_service = Mock()
    assignment_service.assign_verification_panel.return_value = AssignmentResult(assignments_created=30)
    yield {
        'contest': contest,
        'author': author,
        'eliminated': eliminated,
        'payment': verification_payment,
        'assignment_service': assignment_service,
        'service': WebhookService(assignment_service=assignment_service),
    }


class TestStripeWebhooks:

    def test_verification_payment_starts_panel(self, webhook_setup):
        result = webhook_setup['service'].process_stripe_event(_checkout_event(webhook_setup['payment']), NOW)

        assert result['status'] == 'paid'
        assert result['submission_status'] == 'PEER_VERIFICATION_PENDING'
        assert result['assignment']['assignments_created'] == 30
        webhook_setup['assignment_service'].assign_verification_panel.assert_called_once_with(
            webhook_setup['eliminated'].id, NOW
        )

        payment = DatabaseManager(Payment).get(webhook_setup['payment'].id)
        assert payment.status == PaymentStatus.PAID
        assert payment.paid_at == NOW
        assert payment.payment_intent_id == 'pi_test_123'

    def test_duplicate_event_after_resolution_is_ignored(self, webhook_setup):
        event = _checkout_event(webhook_setup['payment'])
        webhook_setup['service'].process_stripe_event(event, NOW)
        DatabaseManager(Submission).update(webhook_setup['eliminated'].id, status=SubmissionStatus.REINSTATED)

        result = webhook_setup['service'].process_stripe_event(event, NOW)

        assert result == {'payment_id': webhook_setup['payment'].id, 'status': 'already_processed'}
        assert webhook_setup['assignment_service'].assign_verification_panel.call_count == 1

    def test_duplicate_event_tops_up_pending_verification(self, webhook_setup):
        event = _checkout_event(webhook_setup['payment'])
        webhook_setup['service'].process_stripe_event(event, NOW)

        result = webhook_setup['service'].process_stripe_event(event, NOW)

        assert result['status'] == 'already_processed'
        assert 'assignment' in result
        assert webhook_setup['assignment_service'].assign_verification_panel.call_count == 2
        assert DatabaseManager(Payment).get(webhook_setup['payment'].id).paid_at == NOW

    def test_entry_fee_submits_entry(self, webhook_setup):
        pending = make_submission(webhook_setup['contest'], make_user(), SubmissionStatus.PENDING_PAYMENT)
        entry_fee = make_payment(pending, purpose=PaymentPurpose.ENTRY_FEE, status=PaymentStatus.PENDING)

        result = webhook_setup['service'].process_stripe_event(_checkout_event(entry_fee), NOW)

        assert result['submission_status'] == 'SUBMITTED'
        assert DatabaseManager(Submission).get(pending.id).status == SubmissionStatus.SUBMITTED
        webhook_setup['assignment_service'].assign_verification_panel.assert_not_called()

    def test_expired_checkout_fails_payment(self, webhook_setup):
        event = _checkout_event(webhook_setup['payment'], 'checkout.session.expired')

        result = webhook_setup['service'].process_stripe_event(event, NOW)

        assert result['status'] == 'failed'
        assert DatabaseManager(Payment).get(webhook_setup['payment'].id).status == PaymentStatus.FAILED

    def test_missing_metadata_is_rejected(self, webhook_setup):
        event = {'type': 'checkout.session.completed', 'data': {'object': {'metadata': {}}}}

        with pytest.raises(ValidationError):
            webhook_setup['service'].process_stripe_event(event, NOW)

    def test_unhandled_event_type(self, webhook_setup):
        result = webhook_setup['service'].process_stripe_event({'type': 'invoice.paid', 'data': {}}, NOW)
        assert result['processed'] is False


class TestRedelivery:

    def test_redelivery_builds_panel_lost_to_a_failed_delivery(self, services):
        contest = make_contest(ContestPhase.AI_FILTERING)
        target = make_submission(contest, make_user('author'), SubmissionStatus.ELIMINATED)
        make_population(contest, 3)
        payment = make_payment(target, purpose=PaymentPurpose.PEER_VERIFICATION,
                               status=PaymentStatus.PENDING, amount_cents=500)
        assignments = services['assignments']
        service = WebhookService(assignment_service=assignments)
        event = _checkout_event(payment)

        with patch.object(assignments, 'assign_verification_panel', side_effect=RuntimeError('database busy')):
            with pytest.raises(RuntimeError):
                service.process_stripe_event(event, NOW)

        assert DatabaseManager(Payment).get(payment.id).status == PaymentStatus.PAID
        assert DatabaseManager(Assignment).count(submission_id=target.id) == 0

        result = service.process_stripe_event(event, NOW)

        assert result['status'] == 'already_processed'
        assert result['assignment']['reviewers_assigned'] == 3
        assert DatabaseManager(Assignment).count(submission_id=target.id) == 3
