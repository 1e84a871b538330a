from flask import Blueprint, jsonify
from review_engine.database import get_db
from review_engine.engine import get_engine
from review_engine.errors import ReviewEngineError
from review_engine.middleware.auth import require_auth
from review_engine.middleware.errors import error_response
from review_engine.models import ScoreSnapshot, Submission
from review_engine.utils.logger import get_logger

bp = Blueprint('submissions', __name__)
logger = get_logger(__name__)


@bp.route('/<int:submission_id>/results', methods=['GET'])
@require_auth
def get_results(current_user, submission_id):
    """Author's view of peer review and verification results"""
    try:
        with get_db() as db:
            submission = db.get(Submission, submission_id)
            if not submission or submission.user_id != current_user['user_id']:
                return jsonify({'error': 'Submission not found'}), 404

            response = {
                'submission_id': submission.id,
                'status': submission.status.value,
                'is_finalist': submission.is_finalist,
                'peer_verification_result': submission.peer_verification_result,
            }
            contest_id = submission.contest_id
            snapshot = db.query(ScoreSnapshot).filter_by(submission_id=submission_id).first()
            snapshot = snapshot.to_dict() if snapshot else None

        if get_engine().settings.get(contest_id).results_visible:
            response['scores'] = snapshot
        else:
            response['scores'] = None
            response['message'] = 'Results are not yet available'

        return jsonify(response), 200
    except ReviewEngineError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error getting results for submission {submission_id}: {str(e)}")
        return jsonify({'error': 'Failed to get results'}), 500
