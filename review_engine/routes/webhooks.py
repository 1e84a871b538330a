from flask import Blueprint, request, jsonify
from review_engine.engine import get_engine
from review_engine.errors import ReviewEngineError
from review_engine.middleware.errors import error_response
from review_engine.utils.logger import get_logger

bp = Blueprint('webhooks', __name__)
logger = get_logger(__name__)


@bp.route('/stripe', methods=['POST'])
def stripe_webhook():
    """Handle Stripe webhook events"""
    engine = get_engine()
    payload = request.get_data()
    sig_header = request.headers.get('Stripe-Signature')

    if not sig_header:
        return jsonify({'error': 'No signature header'}), 400

    # Verify webhook signature
    event = engine.stripe.verify_webhook_signature(payload, sig_header)
    if not event:
        return jsonify({'error': 'Invalid signature'}), 400

    # Process event
    try:
        result = engine.webhooks.process_stripe_event(event)
        return jsonify({'received': True, 'result': result}), 200
    except ReviewEngineError as e:
        logger.warning(f"Rejected Stripe event: {e.message}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Error processing Stripe webhook: {str(e)}")
        return jsonify({'error': str(e)}), 500
