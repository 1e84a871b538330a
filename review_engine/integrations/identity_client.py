import requests
from typing import Dict, Optional
from config.config import Config
from review_engine.errors import TransientError
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


class IdentityClient:
    """Looks up user contact details in the identity provider.

    The engine only stores user ids; emails are resolved when a notification is sent.
    """

    def __init__(self, base_url: str = None, service_key: str = None, session: requests.Session = None):
        self.base_url = (base_url or Config.IDENTITY_API_URL or '').rstrip('/')
        self.service_key = service_key or Config.IDENTITY_SERVICE_KEY
        self.timeout = Config.IDENTITY_TIMEOUT_SECONDS
        self.session = session or requests.Session()

        if not self.base_url:
            logger.warning("Identity provider URL not configured")

    def get_user(self, user_id: int) -> Optional[Dict]:
        """Return {'id', 'email'} or None when the provider does not know the user"""
        if not self.base_url:
            return None

        response = self.session.get(
            f"{self.base_url}/admin/users/{user_id}",
            headers={
                'Authorization': f'Bearer {self.service_key}',
                'apikey': self.service_key or '',
            },
            timeout=self.timeout
        )

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise TransientError(
                f"Identity provider returned {response.status_code} for user {user_id}",
                status_code=response.status_code
            )

        data = response.json()
        user = data.get('user', data)
        return {'id': user_id, 'email': user.get('email')}
