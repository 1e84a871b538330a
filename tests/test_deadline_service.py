from datetime import timedelta

import pytest

from conftest import NOW, make_assignment, make_contest, make_submission, make_user
from review_engine.database import DatabaseManager
from review_engine.models import Assignment, NotificationJob, User
from review_engine.models.assignment import AssignmentStatus
from review_engine.models.contest import ContestPhase
from review_engine.models.notification_job import NotificationKind
from review_engine.services.deadline_service import DeadlineSweeper
from review_engine.services.reassignment_service import ReassignmentService


@pytest.fixture
def sweeper(services):
    shared = {k: v for k, v in services.items() if k != 'assignments'}
    reassignment = ReassignmentService(**shared)
    return DeadlineSweeper(store=services['store'], reassignment=reassignment, notifier=services['notifier'])


@pytest.fixture
def lapsed_review(db_setup):
    """One review assignment made at NOW with the default 7-day deadline"""
    contest = make_contest(ContestPhase.PEER_REVIEW)
    author = make_user('author')
    slow = make_user('slow')
    fresh = make_user('fresh')
    submission = make_submission(contest, author)
    for user in (slow, fresh):
        make_submission(contest, user)
    assignment = make_assignment(submission, slow, assigned_at=NOW)
    yield {'submission': submission, 'slow': slow, 'fresh': fresh, 'assignment': assignment}


class TestDeadlineSweep:

    def test_lapsed_assignment_is_expired_and_reassigned(self, sweeper, lapsed_review):
        day_eight = NOW + timedelta(days=8)

        result = sweeper.run_sweep(day_eight)

        assert result.expired == 1
        assert result.reassignment.reassigned == 1
        expired = DatabaseManager(Assignment).get(lapsed_review['assignment'].id)
        assert expired.status == AssignmentStatus.EXPIRED

        replacement = DatabaseManager(Assignment).get_by(replaces_assignment_id=expired.id)
        assert replacement.reviewer_id == lapsed_review['fresh'].id
        assert replacement.submission_id == lapsed_review['submission'].id
        assert replacement.status == AssignmentStatus.PENDING
        assert replacement.deadline == day_eight + timedelta(days=7)

    def test_expiry_costs_integrity(self, sweeper, lapsed_review):
        sweeper.run_sweep(NOW + timedelta(days=8))
        assert DatabaseManager(User).get(lapsed_review['slow'].id).integrity_score == -2

    def test_sweep_is_idempotent(self, sweeper, lapsed_review):
        day_eight = NOW + timedelta(days=8)
        sweeper.run_sweep(day_eight)

        second = sweeper.run_sweep(day_eight)

        assert second.expired == 0
        assert second.reassignment.reassigned == 0
        assert DatabaseManager(Assignment).count() == 2
        assert DatabaseManager(User).get(lapsed_review['slow'].id).integrity_score == -2

    def test_nothing_due_before_deadline(self, sweeper, lapsed_review):
        result = sweeper.run_sweep(NOW + timedelta(days=6))

        assert result.expired == 0
        assert DatabaseManager(Assignment).get(lapsed_review['assignment'].id).status == AssignmentStatus.PENDING

    def test_no_candidate_leaves_expired_row_with_warning(self, sweeper, db_setup):
        contest = make_contest(ContestPhase.PEER_REVIEW)
        author = make_user('author')
        only = make_user('only')
        submission = make_submission(contest, author)
        make_submission(contest, only)
        make_assignment(submission, only)

        result = sweeper.run_sweep(NOW + timedelta(days=8))

        assert result.expired == 1
        assert result.reassignment.reassigned == 0
        assert any('No eligible reviewer' in w for w in result.warnings)

    def test_replacement_is_notified(self, sweeper, lapsed_review):
        sweeper.run_sweep(NOW + timedelta(days=8))

        jobs = DatabaseManager(NotificationJob).filter(kind=NotificationKind.ASSIGNMENT)
        assert [j.recipient_id for j in jobs] == [lapsed_review['fresh'].id]


class TestReminders:

    def test_warning_groups_assignments_per_reviewer(self, sweeper, db_setup):
        contest = make_contest(ContestPhase.PEER_REVIEW)
        reviewer = make_user('reviewer')
        due = NOW + timedelta(hours=23, minutes=30)
        for _ in range(2):
            make_assignment(make_submission(contest, make_user()), reviewer,
                            assigned_at=due - timedelta(days=7), deadline=due)

        result = sweeper.send_deadline_warnings(NOW)

        assert result.reviewers_notified == 1
        assert result.assignments_covered == 2
        jobs = DatabaseManager(NotificationJob).filter(kind=NotificationKind.DEADLINE_WARNING)
        assert len(jobs) == 1
        assert jobs[0].payload['count'] == 2

    def test_warning_window_bounds(self, sweeper, db_setup):
        contest = make_contest(ContestPhase.PEER_REVIEW)
        reviewer = make_user('reviewer')
        for hours in (22, 30):
            due = NOW + timedelta(hours=hours)
            make_assignment(make_submission(contest, make_user()), reviewer,
                            assigned_at=due - timedelta(days=7), deadline=due)

        assert sweeper.send_deadline_warnings(NOW).reviewers_notified == 0

    def test_final_reminder_window(self, sweeper, db_setup):
        contest = make_contest(ContestPhase.PEER_REVIEW)
        reviewer = make_user('reviewer')
        due = NOW + timedelta(minutes=90)
        make_assignment(make_submission(contest, make_user()), reviewer,
                        assigned_at=due - timedelta(days=7), deadline=due)

        assert sweeper.send_final_reminders(NOW).reviewers_notified == 1
        assert sweeper.send_deadline_warnings(NOW).reviewers_notified == 0
        assert DatabaseManager(NotificationJob).count(kind=NotificationKind.FINAL_REMINDER) == 1

    def test_completed_work_gets_no_reminder(self, sweeper, db_setup):
        contest = make_contest(ContestPhase.PEER_REVIEW)
        due = NOW + timedelta(hours=23, minutes=30)
        make_assignment(make_submission(contest, make_user()), make_user(), status=AssignmentStatus.DONE,
                        assigned_at=due - timedelta(days=7), deadline=due)

        assert sweeper.send_deadline_warnings(NOW).reviewers_notified == 0
