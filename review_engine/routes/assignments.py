from flask import Blueprint, request, jsonify
from review_engine.engine import get_engine
from review_engine.errors import ReviewEngineError
from review_engine.middleware.auth import require_auth
from review_engine.middleware.errors import error_response
from review_engine.models.assignment import AssignmentStatus
from review_engine.utils.logger import get_logger

bp = Blueprint('assignments', __name__)
logger = get_logger(__name__)


@bp.route('/mine', methods=['GET'])
@require_auth
def my_assignments(current_user):
    """List the reviewer's assignments, optionally filtered by status"""
    status = request.args.get('status')
    try:
        status = AssignmentStatus(status.upper()) if status else None
    except ValueError:
        return jsonify({'error': f'Unknown status: {status}'}), 400

    try:
        assignments = get_engine().reviews.list_assignments(current_user['user_id'], status)
        return jsonify({'assignments': assignments}), 200
    except Exception as e:
        logger.error(f"Error listing assignments: {str(e)}")
        return jsonify({'error': 'Failed to list assignments'}), 500


@bp.route('/<int:assignment_id>/review', methods=['POST'])
@require_auth
def submit_review(current_user, assignment_id):
    """Submit a review for an assignment"""
    data = request.get_json(silent=True) or {}

    try:
        result = get_engine().reviews.submit_review(
            assignment_id,
            current_user['user_id'],
            comment=data.get('comment'),
            scores=data.get('scores'),
            decision=data.get('decision')
        )
        return jsonify(result), 201
    except ReviewEngineError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error submitting review: {str(e)}")
        return jsonify({'error': 'Failed to submit review'}), 500
