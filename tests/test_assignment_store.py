from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import NOW, make_assignment, make_contest, make_submission, make_user
from review_engine.database import DatabaseManager, get_db
from review_engine.errors import ConflictError, ValidationError
from review_engine.models import Assignment, User
from review_engine.models.assignment import AssignmentMode, AssignmentStatus
from review_engine.services.assignment_store import AssignmentStore
from review_engine.services.panel_selector import PanelItem


@pytest.fixture
def store_data(db_setup):
    contest = make_contest()
    reviewer = make_user('reviewer')
    own = make_submission(contest, reviewer)
    others = [make_submission(contest, make_user()) for _ in range(3)]
    yield {'contest': contest, 'reviewer': reviewer, 'own': own, 'others': others}


class TestCreatePanel:

    def test_creates_pending_rows_with_deadline(self, store_data):
        store = AssignmentStore()
        items = [PanelItem(s.id, False) for s in store_data['others']]

        ids = store.create_panel(store_data['reviewer'].id, items, AssignmentMode.REVIEW, 7, NOW)

        assert len(ids) == 3
        for assignment_id in ids:
            assignment = DatabaseManager(Assignment).get(assignment_id)
            assert assignment.status == AssignmentStatus.PENDING
            assert assignment.assigned_at == NOW
            assert assignment.deadline == NOW + timedelta(days=7)

    def test_self_review_rejects_whole_panel(self, store_data):
        store = AssignmentStore()
        items = [PanelItem(store_data['others'][0].id, False), PanelItem(store_data['own'].id, False)]

        with pytest.raises(ValidationError):
            store.create_panel(store_data['reviewer'].id, items, AssignmentMode.REVIEW, 7, NOW)

        assert DatabaseManager(Assignment).count() == 0

    def test_duplicate_active_pair_conflicts(self, store_data):
        store = AssignmentStore()
        target = store_data['others'][0]
        store.create_panel(store_data['reviewer'].id, [PanelItem(target.id, False)],
                           AssignmentMode.REVIEW, 7, NOW)

        with pytest.raises(ConflictError):
            store.create_panel(
                store_data['reviewer'].id,
                [PanelItem(store_data['others'][1].id, False), PanelItem(target.id, False)],
                AssignmentMode.REVIEW, 7, NOW
            )

        assert DatabaseManager(Assignment).count() == 1

    def test_verified_submission_cannot_be_reviewed_again(self, store_data):
        store = AssignmentStore()
        target = store_data['others'][0]
        make_assignment(target, store_data['reviewer'], mode=AssignmentMode.VERIFICATION,
                        status=AssignmentStatus.DONE, verification_request_id=target.id)

        with pytest.raises(ConflictError):
            store.create_panel(store_data['reviewer'].id, [PanelItem(target.id, False)],
                               AssignmentMode.REVIEW, 7, NOW)

        assert DatabaseManager(Assignment).count() == 1

    def test_live_pair_is_unique_across_modes_in_the_table(self, store_data):
        target = store_data['others'][0]
        make_assignment(target, store_data['reviewer'], mode=AssignmentMode.VERIFICATION)

        with pytest.raises(IntegrityError):
            make_assignment(target, store_data['reviewer'], mode=AssignmentMode.REVIEW)

    def test_expired_pair_can_be_assigned_again(self, store_data):
        store = AssignmentStore()
        target = store_data['others'][0]
        make_assignment(target, store_data['reviewer'], status=AssignmentStatus.EXPIRED)

        ids = store.create_panel(store_data['reviewer'].id, [PanelItem(target.id, False)],
                                 AssignmentMode.REVIEW, 7, NOW)

        assert len(ids) == 1

    def test_same_submission_twice_in_panel(self, store_data):
        store = AssignmentStore()
        target = store_data['others'][0]

        with pytest.raises(ConflictError):
            store.create_panel(store_data['reviewer'].id,
                               [PanelItem(target.id, False), PanelItem(target.id, True)],
                               AssignmentMode.VERIFICATION, 7, NOW)


class TestExpireLapsed:

    def test_expires_only_passed_deadlines_and_penalizes(self, store_data):
        reviewer = store_data['reviewer']
        lapsed = make_assignment(store_data['others'][0], reviewer, deadline=NOW - timedelta(minutes=1))
        make_assignment(store_data['others'][1], reviewer, deadline=NOW + timedelta(hours=1))

        expired = AssignmentStore().expire_lapsed(NOW, penalty=-2)

        assert [e.id for e in expired] == [lapsed.id]
        assert DatabaseManager(Assignment).get(lapsed.id).status == AssignmentStatus.EXPIRED
        assert DatabaseManager(User).get(reviewer.id).integrity_score == -2

    def test_second_run_is_a_no_op(self, store_data):
        reviewer = store_data['reviewer']
        make_assignment(store_data['others'][0], reviewer, deadline=NOW - timedelta(days=1))
        store = AssignmentStore()

        first = store.expire_lapsed(NOW, penalty=-2)
        second = store.expire_lapsed(NOW, penalty=-2)

        assert len(first) == 1
        assert second == []
        assert DatabaseManager(User).get(reviewer.id).integrity_score == -2

    def test_done_assignments_never_expire(self, store_data):
        make_assignment(store_data['others'][0], store_data['reviewer'], status=AssignmentStatus.DONE,
                        deadline=NOW - timedelta(days=1))

        assert AssignmentStore().expire_lapsed(NOW) == []


class TestCompleteWithReview:

    def test_completion_requires_pending(self, store_data):
        assignment = make_assignment(store_data['others'][0], store_data['reviewer'],
                                     status=AssignmentStatus.EXPIRED)
        fields = {'clarity': 3, 'argument': 3, 'style': 3, 'moral_depth': 3, 'comment': 'Late'}

        with pytest.raises(ConflictError):
            with get_db() as db:
                AssignmentStore().complete_with_review(db, db.get(Assignment, assignment.id), fields, NOW)

    def test_completion_marks_done(self, store_data):
        assignment = make_assignment(store_data['others'][0], store_data['reviewer'])
        fields = {'clarity': 4, 'argument': 3, 'style': 5, 'moral_depth': 2, 'comment': 'Good'}

        with get_db() as db:
            review = AssignmentStore().complete_with_review(db, db.get(Assignment, assignment.id), fields, NOW)
            db.flush()
            review_id = review.id

        stored = DatabaseManager(Assignment).get(assignment.id)
        assert stored.status == AssignmentStatus.DONE
        assert stored.completed_at == NOW
        assert review_id is not None
