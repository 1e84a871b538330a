from .logger import setup_logger, get_logger
from .security import generate_token, verify_token, verify_cron_secret
from .retry import RetryPolicy, is_retryable

__all__ = [
    'setup_logger', 'get_logger',
    'generate_token', 'verify_token', 'verify_cron_secret',
    'RetryPolicy', 'is_retryable'
]
