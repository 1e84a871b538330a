from flask import Blueprint, jsonify
from review_engine.engine import get_engine
from review_engine.middleware.auth import require_cron_secret
from review_engine.utils.logger import get_logger

bp = Blueprint('cron', __name__)
logger = get_logger(__name__)


@bp.route('/check-deadlines', methods=['POST', 'GET'])
@require_cron_secret
def check_deadlines():
    """Expire lapsed assignments, reassign them, time out stuck verifications"""
    try:
        result = get_engine().sweeper.run_sweep()
        return jsonify(result.to_dict()), 200
    except Exception as e:
        logger.error(f"Error running deadline sweep: {str(e)}")
        return jsonify({'error': 'Failed to run deadline sweep'}), 500


@bp.route('/send-warnings', methods=['POST', 'GET'])
@require_cron_secret
def send_warnings():
    """Queue the 24-hour warnings and the final reminders"""
    try:
        sweeper = get_engine().sweeper
        warnings = sweeper.send_deadline_warnings()
        final = sweeper.send_final_reminders()
        return jsonify({
            'deadline_warnings': warnings.to_dict(),
            'final_reminders': final.to_dict()
        }), 200
    except Exception as e:
        logger.error(f"Error sending deadline warnings: {str(e)}")
        return jsonify({'error': 'Failed to send deadline warnings'}), 500


@bp.route('/dispatch-notifications', methods=['POST', 'GET'])
@require_cron_secret
def dispatch_notifications():
    try:
        result = get_engine().dispatcher.dispatch_pending()
        return jsonify(result.to_dict()), 200
    except Exception as e:
        logger.error(f"Error dispatching notifications: {str(e)}")
        return jsonify({'error': 'Failed to dispatch notifications'}), 500
