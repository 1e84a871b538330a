from flask import Blueprint, request, jsonify
from review_engine.engine import get_engine
from review_engine.errors import ReviewEngineError
from review_engine.middleware.auth import require_auth, require_admin
from review_engine.middleware.errors import error_response
from review_engine.models.contest import ContestPhase
from review_engine.utils.logger import get_logger

bp = Blueprint('admin', __name__)
logger = get_logger(__name__)


@bp.route('/contests/<int:contest_id>/phase', methods=['POST'])
@require_auth
@require_admin
def advance_phase(current_user, contest_id):
    """Move a contest to the next phase"""
    data = request.get_json(silent=True) or {}
    try:
        to_phase = ContestPhase(str(data.get('phase', '')).upper())
    except ValueError:
        return jsonify({'error': 'Unknown phase'}), 400

    try:
        result = get_engine().phases.advance_phase(contest_id, to_phase)
        logger.info(f"Admin {current_user['user_id']} advanced contest {contest_id} to {to_phase.value}")
        return jsonify(result), 200
    except ReviewEngineError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error advancing contest phase: {str(e)}")
        return jsonify({'error': 'Failed to advance phase'}), 500


@bp.route('/contests/<int:contest_id>/end-peer-review', methods=['POST'])
@require_auth
@require_admin
def end_peer_review(current_user, contest_id):
    try:
        result = get_engine().phases.end_peer_review(contest_id)
        logger.info(f"Admin {current_user['user_id']} ended peer review for contest {contest_id}")
        return jsonify(result.to_dict()), 200
    except ReviewEngineError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error ending peer review: {str(e)}")
        return jsonify({'error': 'Failed to end peer review'}), 500


@bp.route('/assignments/<int:assignment_id>/reassign', methods=['POST'])
@require_auth
@require_admin
def reassign(current_user, assignment_id):
    """Replace an expired assignment, optionally with a chosen reviewer"""
    data = request.get_json(silent=True) or {}
    new_reviewer_id = data.get('new_reviewer_id')
    if new_reviewer_id is not None and (isinstance(new_reviewer_id, bool) or not isinstance(new_reviewer_id, int)):
        return jsonify({'error': 'new_reviewer_id must be an integer'}), 400

    try:
        result = get_engine().reassignment.reassign(assignment_id, new_reviewer_id)
        return jsonify(result), 200
    except ReviewEngineError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error reassigning assignment {assignment_id}: {str(e)}")
        return jsonify({'error': 'Failed to reassign'}), 500


@bp.route('/contests/<int:contest_id>/voting-rules', methods=['GET'])
@require_auth
@require_admin
def get_voting_rules(current_user, contest_id):
    try:
        settings = get_engine().settings.refresh(contest_id)
        return jsonify({'contest_id': contest_id, 'voting_rules': settings.to_dict()}), 200
    except ReviewEngineError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error reading voting rules: {str(e)}")
        return jsonify({'error': 'Failed to read voting rules'}), 500


@bp.route('/contests/<int:contest_id>/voting-rules', methods=['PUT'])
@require_auth
@require_admin
def update_voting_rules(current_user, contest_id):
    data = request.get_json(silent=True)
    try:
        settings = get_engine().settings.update_voting_rules(contest_id, data)
        return jsonify({'contest_id': contest_id, 'voting_rules': settings.to_dict()}), 200
    except ReviewEngineError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error updating voting rules: {str(e)}")
        return jsonify({'error': 'Failed to update voting rules'}), 500


@bp.route('/submissions/<int:submission_id>/verification-override', methods=['POST'])
@require_auth
@require_admin
def override_verification(current_user, submission_id):
    """Set a peer verification outcome by hand, with a written justification"""
    data = request.get_json(silent=True) or {}
    try:
        result = get_engine().verification_results.override(
            submission_id, data.get('outcome'), data.get('justification'), current_user['user_id']
        )
        return jsonify(result), 200
    except ReviewEngineError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error overriding verification for submission {submission_id}: {str(e)}")
        return jsonify({'error': 'Failed to override verification'}), 500
