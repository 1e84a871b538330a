from functools import wraps
from flask import request, jsonify
from review_engine.utils.security import verify_token, verify_cron_secret
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)


def _bearer_token():
    """Token from an 'Authorization: Bearer <token>' header, or an error response"""
    auth_header = request.headers.get('Authorization')

    if not auth_header:
        return None, (jsonify({'error': 'Authorization header missing'}), 401)

    parts = auth_header.split()
    if len(parts) != 2 or parts[0] != 'Bearer':
        return None, (jsonify({'error': 'Invalid authorization header format'}), 401)

    return parts[1], None


def require_auth(f):
    """Decorator to require authentication"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token, error = _bearer_token()
        if error:
            return error

        payload = verify_token(token)
        if not payload or payload.get('user_id') is None:
            return jsonify({'error': 'Invalid or expired token'}), 401

        # Add user info to kwargs
        return f(current_user=payload, *args, **kwargs)

    return decorated_function


def require_role(allowed_roles):
    """Decorator to require specific roles"""
    def decorator(f):
        @wraps(f)
        def decorated_function(current_user, *args, **kwargs):
            if current_user.get('role') not in allowed_roles:
                return jsonify({'error': 'Insufficient permissions'}), 403
            return f(current_user, *args, **kwargs)
        return decorated_function
    return decorator


def require_admin(f):
    """Decorator to require admin role"""
    return require_role(['admin'])(f)


def require_cron_secret(f):
    """Decorator for scheduler-triggered endpoints, authenticated by CRON_SECRET"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token, error = _bearer_token()
        if error:
            return error

        if not verify_cron_secret(token):
            logger.warning(f"Rejected cron request to {request.path}")
            return jsonify({'error': 'Unauthorized'}), 401

        return f(*args, **kwargs)

    return decorated_function
