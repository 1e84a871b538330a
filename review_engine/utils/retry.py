"""Single retry policy for every outbound call the engine makes.

Delay before retry n is ``base_delay * 2 ** (n - 1)`` plus up to
``max_jitter`` seconds of random jitter.
"""
import time
from typing import Callable, Optional

import requests
from sqlalchemy.exc import IntegrityError, OperationalError
from tenacity import (Retrying, retry_if_exception, stop_after_attempt,
                      wait_exponential, wait_random)

from config.config import Config
from review_engine.errors import ReviewEngineError, TransientError
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)

NETWORK_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    ConnectionError,
    TimeoutError,
    OperationalError,
)


def status_code_of(exc: BaseException) -> Optional[int]:
    """Best-effort HTTP status from requests, SendGrid, Stripe or engine errors"""
    for attr in ('status_code', 'http_status', 'code'):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, 'response', None)
    value = getattr(response, 'status_code', None)
    return value if isinstance(value, int) else None


def is_retryable(exc: BaseException) -> bool:
    """429 and 5xx retry, other 4xx never; network errors retry"""
    if isinstance(exc, TransientError):
        status = exc.status_code
        return status is None or status == 429 or status >= 500
    if isinstance(exc, (ReviewEngineError, IntegrityError)):
        return False
    if isinstance(exc, NETWORK_ERRORS):
        return True

    status = status_code_of(exc)
    if status is not None and 400 <= status < 500:
        return status == 429
    return True


class RetryPolicy:
    """Bounded exponential backoff with jitter, built on tenacity"""

    def __init__(self, max_attempts: int = None, base_delay: float = None,
                 max_jitter: float = None, is_retryable: Callable = is_retryable,
                 sleep: Callable = time.sleep):
        self.max_attempts = max_attempts if max_attempts is not None else Config.RETRY_MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else Config.RETRY_BASE_DELAY_SECONDS
        self.max_jitter = max_jitter if max_jitter is not None else Config.RETRY_MAX_JITTER_SECONDS
        self.is_retryable = is_retryable
        self.sleep = sleep

    def _retrying(self, label: str) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=0) + wait_random(0, self.max_jitter),
            retry=retry_if_exception(self.is_retryable),
            reraise=True,
            sleep=self.sleep,
            before_sleep=lambda rs: logger.warning(
                f"{label}: retrying (attempt {rs.attempt_number + 1}/{self.max_attempts}) "
                f"after error: {rs.outcome.exception() if rs.outcome else 'unknown error'}"
            ),
        )

    def call(self, fn: Callable, *args, label: str = None, **kwargs):
        """Run fn under the policy; the last exception propagates when attempts run out"""
        return self._retrying(label or getattr(fn, '__name__', 'call'))(fn, *args, **kwargs)
