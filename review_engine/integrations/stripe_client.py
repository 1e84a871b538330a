import stripe
from typing import Dict, Optional
from config.config import Config
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)

# Configure Stripe
stripe.api_key = Config.STRIPE_SECRET_KEY


class StripeClient:
    """Wrapper for the Stripe calls the engine needs: webhooks and refunds"""

    def __init__(self):
        self.api_key = Config.STRIPE_SECRET_KEY
        if not self.api_key:
            logger.warning("Stripe API key not configured")

    def create_refund(self, payment_intent_id: str, reason: str = None,
                      idempotency_key: str = None) -> Dict:
        """Create a refund; Stripe errors propagate to the caller's retry policy"""
        refund_data = {"payment_intent": payment_intent_id}
        if reason:
            refund_data["reason"] = reason
        if idempotency_key:
            refund_data["idempotency_key"] = idempotency_key

        return stripe.Refund.create(**refund_data)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> Optional[Dict]:
        """Verify webhook signature and return event"""
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, Config.STRIPE_WEBHOOK_SECRET
            )
            return event
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {str(e)}")
            return None
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid webhook signature: {str(e)}")
            return None
