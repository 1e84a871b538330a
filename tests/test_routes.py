from datetime import datetime

import pytest

from conftest import NOW, make_assignment, make_contest, make_submission, make_user
from config.config import TestingConfig
from review_engine.database import DatabaseManager
from review_engine.engine import ReviewEngine
from review_engine.main import create_app
from review_engine.models import Contest, ScoreSnapshot, Submission
from review_engine.models.contest import ContestPhase
from review_engine.models.submission import SubmissionStatus
from review_engine.utils.security import generate_token

CRON_HEADERS = {'Authorization': 'Bearer test-cron-secret'}


def _auth(user, role=None):
    payload = {'user_id': user.id}
    if role:
        payload['role'] = role
    return {'Authorization': f'Bearer {generate_token(payload)}'}


@pytest.fixture
def client(db_setup):
    app = create_app('testing', engine=ReviewEngine(TestingConfig))
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def api_data(db_setup):
    contest = make_contest(ContestPhase.PEER_REVIEW)
    author = make_user('author')
    reviewer = make_user('reviewer')
    admin = make_user('admin')
    submission = make_submission(contest, author)
    make_submission(contest, reviewer)
    # Routes read the wall clock, so the deadline must be relative to it
    assignment = make_assignment(submission, reviewer, assigned_at=datetime.utcnow())
    yield {'contest': contest, 'author': author, 'reviewer': reviewer, 'admin': admin,
           'submission': submission, 'assignment': assignment}


class TestHealth:

    def test_health(self, client):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'ok'


class TestCronRoutes:

    def test_requires_secret(self, client):
        assert client.post('/api/cron/check-deadlines').status_code == 401
        response = client.post('/api/cron/check-deadlines', headers={'Authorization': 'Bearer wrong'})
        assert response.status_code == 401

    def test_sweep_runs_with_secret(self, client):
        response = client.post('/api/cron/check-deadlines', headers=CRON_HEADERS)

        assert response.status_code == 200
        assert response.get_json()['expired'] == 0

    def test_warnings_report_both_windows(self, client):
        response = client.post('/api/cron/send-warnings', headers=CRON_HEADERS)

        data = response.get_json()
        assert response.status_code == 200
        assert 'deadline_warnings' in data
        assert 'final_reminders' in data


class TestAssignmentRoutes:

    def test_requires_token(self, client):
        assert client.get('/api/assignments/mine').status_code == 401

    def test_lists_own_assignments(self, client, api_data):
        response = client.get('/api/assignments/mine', headers=_auth(api_data['reviewer']))

        assignments = response.get_json()['assignments']
        assert response.status_code == 200
        assert [a['id'] for a in assignments] == [api_data['assignment'].id]

    def test_submit_review(self, client, api_data):
        response = client.post(
            f"/api/assignments/{api_data['assignment'].id}/review",
            json={'comment': 'Moving and well argued',
                  'scores': {'clarity': 5, 'argument': 4, 'style': 4, 'moral_depth': 5}},
            headers=_auth(api_data['reviewer'])
        )

        assert response.status_code == 201
        assert response.get_json()['score_updated'] is True

    def test_invalid_review_is_bad_request(self, client, api_data):
        response = client.post(
            f"/api/assignments/{api_data['assignment'].id}/review",
            json={'comment': '', 'scores': {'clarity': 5}},
            headers=_auth(api_data['reviewer'])
        )
        assert response.status_code == 400

    def test_someone_elses_assignment_is_not_found(self, client, api_data):
        response = client.post(
            f"/api/assignments/{api_data['assignment'].id}/review",
            json={'comment': 'Sneaky', 'scores': {'clarity': 5, 'argument': 5, 'style': 5, 'moral_depth': 5}},
            headers=_auth(api_data['author'])
        )
        assert response.status_code == 404


class TestAdminRoutes:

    def test_requires_admin_role(self, client, api_data):
        response = client.get(f"/api/admin/contests/{api_data['contest'].id}/voting-rules",
                              headers=_auth(api_data['reviewer']))
        assert response.status_code == 403

    def test_update_voting_rules(self, client, api_data):
        response = client.put(f"/api/admin/contests/{api_data['contest'].id}/voting-rules",
                              json={'finalist_count': 10},
                              headers=_auth(api_data['admin'], 'admin'))

        assert response.status_code == 200
        assert response.get_json()['voting_rules']['finalist_count'] == 10

    def test_invalid_voting_rules(self, client, api_data):
        response = client.put(f"/api/admin/contests/{api_data['contest'].id}/voting-rules",
                              json={'finalist_count': -1},
                              headers=_auth(api_data['admin'], 'admin'))
        assert response.status_code == 400

    def test_phase_cannot_be_skipped(self, client, api_data):
        response = client.post(f"/api/admin/contests/{api_data['contest'].id}/phase",
                               json={'phase': 'FINALIZED'},
                               headers=_auth(api_data['admin'], 'admin'))

        assert response.status_code == 400
        assert DatabaseManager(Contest).get(api_data['contest'].id).phase == ContestPhase.PEER_REVIEW

    def test_verification_override(self, client, api_data):
        pending = make_submission(api_data['contest'], make_user(), SubmissionStatus.PEER_VERIFICATION_PENDING)

        response = client.post(f"/api/admin/submissions/{pending.id}/verification-override",
                               json={'outcome': 'REINSTATED',
                                     'justification': 'Plagiarism report was a false positive.'},
                               headers=_auth(api_data['admin'], 'admin'))

        assert response.status_code == 200
        assert response.get_json()['new_status'] == 'REINSTATED'
        assert DatabaseManager(Submission).get(pending.id).status == SubmissionStatus.REINSTATED

    def test_verification_override_needs_justification(self, client, api_data):
        pending = make_submission(api_data['contest'], make_user(), SubmissionStatus.PEER_VERIFICATION_PENDING)

        response = client.post(f"/api/admin/submissions/{pending.id}/verification-override",
                               json={'outcome': 'REINSTATED', 'justification': 'ok'},
                               headers=_auth(api_data['admin'], 'admin'))

        assert response.status_code == 400

    def test_unknown_contest(self, client, api_data):
        response = client.post('/api/admin/contests/999/end-peer-review',
                               headers=_auth(api_data['admin'], 'admin'))
        assert response.status_code == 404


class TestSubmissionRoutes:

    def _snapshot(self, submission):
        DatabaseManager(ScoreSnapshot).create(
            submission_id=submission.id, overall=4.25, clarity=4.0, argument=4.5, style=4.0,
            moral_depth=4.5, review_count=5, used_trimmed_mean=True, rank=1, computed_at=NOW
        )

    def test_scores_hidden_until_visible(self, client, api_data):
        self._snapshot(api_data['submission'])
        DatabaseManager(Contest).update(api_data['contest'].id, voting_rules={'results_visible': False})

        response = client.get(f"/api/submissions/{api_data['submission'].id}/results",
                              headers=_auth(api_data['author']))

        assert response.status_code == 200
        assert response.get_json()['scores'] is None

    def test_scores_shown_when_visible(self, client, api_data):
        self._snapshot(api_data['submission'])
        DatabaseManager(Contest).update(api_data['contest'].id, voting_rules={'results_visible': True})

        response = client.get(f"/api/submissions/{api_data['submission'].id}/results",
                              headers=_auth(api_data['author']))

        assert response.get_json()['scores']['overall'] == 4.25

    def test_other_users_cannot_see_results(self, client, api_data):
        response = client.get(f"/api/submissions/{api_data['submission'].id}/results",
                              headers=_auth(api_data['reviewer']))
        assert response.status_code == 404
