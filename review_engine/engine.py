"""Composition root: builds every service once and shares the collaborators."""
import random

from flask import current_app

from review_engine.integrations import IdentityClient, SendGridClient, StripeClient
from review_engine.services.assignment_service import AssignmentService
from review_engine.services.assignment_store import AssignmentStore
from review_engine.services.deadline_service import DeadlineSweeper
from review_engine.services.eligibility_service import EligibilityResolver
from review_engine.services.notification_service import NotificationDispatcher, Notifier
from review_engine.services.panel_selector import PanelSelector
from review_engine.services.phase_service import PhaseService
from review_engine.services.reassignment_service import ReassignmentService
from review_engine.services.review_service import ReviewService
from review_engine.services.scoring_service import ScoringService
from review_engine.services.settings_provider import ContestSettingsProvider
from review_engine.services.verification_results_service import VerificationResultsService
from review_engine.services.webhook_service import WebhookService
from review_engine.utils.retry import RetryPolicy

EXTENSION_KEY = 'review_engine'


class ReviewEngine:

    def __init__(self, config=None, rng: random.Random = None, sendgrid: SendGridClient = None,
                 stripe: StripeClient = None, identity: IdentityClient = None, sleep=None):
        retry_kwargs = {}
        if config is not None:
            retry_kwargs = {
                'max_attempts': config.RETRY_MAX_ATTEMPTS,
                'base_delay': config.RETRY_BASE_DELAY_SECONDS,
                'max_jitter': config.RETRY_MAX_JITTER_SECONDS,
            }
        if sleep is not None:
            retry_kwargs['sleep'] = sleep

        self.retry_policy = RetryPolicy(**retry_kwargs)
        self.settings = ContestSettingsProvider(
            ttl_seconds=config.SETTINGS_CACHE_TTL_SECONDS if config is not None else None
        )
        self.store = AssignmentStore()
        self.resolver = EligibilityResolver()
        self.selector = PanelSelector(rng)
        self.notifier = Notifier()
        self.stripe = stripe or StripeClient()

        shared = dict(store=self.store, resolver=self.resolver, selector=self.selector,
                      notifier=self.notifier, settings=self.settings, retry_policy=self.retry_policy)

        self.assignments = AssignmentService(**shared)
        self.reassignment = ReassignmentService(**shared)
        self.scoring = ScoringService(settings=self.settings)
        self.verification_results = VerificationResultsService(
            store=self.store, notifier=self.notifier, stripe=self.stripe, retry_policy=self.retry_policy
        )
        self.reviews = ReviewService(
            store=self.store, scoring=self.scoring, verification_results=self.verification_results
        )
        self.sweeper = DeadlineSweeper(
            store=self.store, reassignment=self.reassignment,
            verification_results=self.verification_results, notifier=self.notifier
        )
        self.phases = PhaseService(
            assignment_service=self.assignments, scoring=self.scoring, store=self.store,
            notifier=self.notifier, settings=self.settings
        )
        self.webhooks = WebhookService(assignment_service=self.assignments)
        self.dispatcher = NotificationDispatcher(
            sendgrid=sendgrid, identity=identity, retry_policy=self.retry_policy,
            interval_seconds=config.EMAIL_SEND_INTERVAL_SECONDS if config is not None else None,
            **({'sleep': sleep} if sleep is not None else {})
        )


def get_engine() -> ReviewEngine:
    """The engine owned by the running Flask app"""
    return current_app.extensions[EXTENSION_KEY]
