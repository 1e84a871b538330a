import os

os.environ['DATABASE_URL'] = 'sqlite:///test_review_engine.db'
os.environ['CRON_SECRET'] = 'test-cron-secret'

import random
from datetime import datetime, timedelta
from itertools import count

import pytest

from review_engine.database import DatabaseManager, drop_db, init_db
from review_engine.models import Assignment, Contest, Payment, Review, Submission, User
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.models.contest import ContestPhase
from review_engine.models.submission import SubmissionStatus
from review_engine.services.assignment_service import AssignmentService
from review_engine.services.assignment_store import AssignmentStore
from review_engine.services.eligibility_service import EligibilityResolver
from review_engine.services.notification_service import Notifier
from review_engine.services.panel_selector import PanelSelector
from review_engine.services.settings_provider import ContestSettingsProvider
from review_engine.utils.retry import RetryPolicy

NOW = datetime(2026, 3, 1, 12, 0, 0)

_codes = count(1)


@pytest.fixture
def db_setup():
    """Fresh tables for every test"""
    drop_db()
    init_db()
    yield
    drop_db()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def no_wait_retry():
    return RetryPolicy(max_attempts=3, base_delay=0, max_jitter=0, sleep=lambda seconds: None)


@pytest.fixture
def services(db_setup, no_wait_retry):
    """Engine collaborators wired the way ReviewEngine wires them, with a seeded RNG"""
    settings = ContestSettingsProvider(ttl_seconds=0)
    shared = dict(
        store=AssignmentStore(),
        resolver=EligibilityResolver(),
        selector=PanelSelector(random.Random(42)),
        notifier=Notifier(),
        settings=settings,
        retry_policy=no_wait_retry,
    )
    shared['assignments'] = AssignmentService(**shared)
    return shared


def make_contest(phase=ContestPhase.PEER_REVIEW, voting_rules=None):
    return DatabaseManager(Contest).create(
        name='Spring Essay Contest',
        phase=phase,
        voting_rules=voting_rules or {}
    )


def make_user(display_id=None, **kwargs):
    return DatabaseManager(User).create(
        display_id=display_id or f'reviewer-{next(_codes)}',
        **kwargs
    )


def make_submission(contest, user, status=SubmissionStatus.SUBMITTED, **kwargs):
    code = next(_codes)
    return DatabaseManager(Submission).create(
        contest_id=contest.id,
        user_id=user.id,
        status=status,
        title=f'Essay {code}',
        body_text='On the duties we owe strangers.',
        submission_code=f'SUB-{code:05d}',
        **kwargs
    )


def make_assignment(submission, reviewer, mode=AssignmentMode.REVIEW, status=AssignmentStatus.PENDING,
                    assigned_at=NOW, deadline=None, **kwargs):
    return DatabaseManager(Assignment).create(
        submission_id=submission.id,
        reviewer_id=reviewer.id,
        mode=mode,
        status=status,
        assigned_at=assigned_at,
        deadline=deadline or assigned_at + timedelta(days=7),
        **kwargs
    )


def make_review(assignment, scores=None, decision=None, comment='Solid work'):
    if assignment.mode == AssignmentMode.REVIEW:
        scores = scores or {'clarity': 3, 'argument': 3, 'style': 3, 'moral_depth': 3}
        fields = dict(scores)
    else:
        fields = {'decision': decision}
    DatabaseManager(Assignment).update(assignment.id, status=AssignmentStatus.DONE, completed_at=NOW)
    return DatabaseManager(Review).create(
        assignment_id=assignment.id,
        kind=assignment.mode,
        comment=comment,
        **fields
    )


def make_payment(submission, **kwargs):
    return DatabaseManager(Payment).create(
        submission_id=submission.id,
        user_id=submission.user_id,
        **kwargs
    )


def make_population(contest, size, status=SubmissionStatus.SUBMITTED):
    """size users, one submission each"""
    users, submissions = [], []
    for _ in range(size):
        user = make_user()
        users.append(user)
        submissions.append(make_submission(contest, user, status))
    return users, submissions
