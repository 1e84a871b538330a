from unittest.mock import Mock

import pytest
import requests

from review_engine.errors import NotFoundError, TransientError
from review_engine.utils.retry import RetryPolicy, is_retryable, status_code_of


class _HttpError(Exception):
    def __init__(self, status_code):
        super().__init__(f'HTTP {status_code}')
        self.status_code = status_code


class TestClassification:

    def test_server_errors_and_throttling_retry(self):
        assert is_retryable(TransientError('busy', status_code=503))
        assert is_retryable(TransientError('slow down', status_code=429))
        assert is_retryable(_HttpError(500))

    def test_client_errors_do_not_retry(self):
        assert not is_retryable(TransientError('bad request', status_code=400))
        assert not is_retryable(_HttpError(404))

    def test_network_errors_retry(self):
        assert is_retryable(requests.ConnectionError('reset'))
        assert is_retryable(TimeoutError())

    def test_engine_errors_do_not_retry(self):
        assert not is_retryable(NotFoundError('missing'))

    def test_status_from_response_attribute(self):
        error = Exception('wrapped')
        error.response = Mock(status_code=502)
        assert status_code_of(error) == 502


class TestRetryPolicy:

    def test_succeeds_after_transient_failures(self):
        sleep = Mock()
        fn = Mock(side_effect=[TransientError('busy', status_code=503), requests.Timeout(), 'ok'])
        policy = RetryPolicy(max_attempts=3, base_delay=1, max_jitter=0, sleep=sleep)

        assert policy.call(fn, 'arg', label='test') == 'ok'
        assert fn.call_count == 3

    def test_delays_double(self):
        sleep = Mock()
        fn = Mock(side_effect=[TransientError('busy'), TransientError('busy'), 'ok'])
        policy = RetryPolicy(max_attempts=3, base_delay=1, max_jitter=0, sleep=sleep)

        policy.call(fn, label='test')

        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    def test_jitter_is_bounded(self):
        sleep = Mock()
        fn = Mock(side_effect=[TransientError('busy'), 'ok'])
        policy = RetryPolicy(max_attempts=3, base_delay=1, max_jitter=0.5, sleep=sleep)

        policy.call(fn, label='test')

        assert 1 <= sleep.call_args.args[0] <= 1.5

    def test_last_error_propagates_when_exhausted(self):
        fn = Mock(side_effect=TransientError('still busy', status_code=503))
        policy = RetryPolicy(max_attempts=3, base_delay=0, max_jitter=0, sleep=Mock())

        with pytest.raises(TransientError):
            policy.call(fn, label='test')
        assert fn.call_count == 3

    def test_permanent_error_is_not_retried(self):
        sleep = Mock()
        fn = Mock(side_effect=NotFoundError('missing'))
        policy = RetryPolicy(max_attempts=3, base_delay=0, max_jitter=0, sleep=sleep)

        with pytest.raises(NotFoundError):
            policy.call(fn, label='test')
        assert fn.call_count == 1
        sleep.assert_not_called()
