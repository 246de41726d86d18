"""
Tests for the external-service retry policy.
"""

import pytest
import requests

from braaktrend.core.errors import ExternalServiceFailure
from braaktrend.utils.retry import RetryPolicy, call_with_retry, is_transient_error


class Flaky:
    """Callable failing ``n_failures`` times before returning ``value``."""

    def __init__(self, n_failures, error, value="ok"):
        self.n_failures = n_failures
        self.error = error
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.n_failures:
            raise self.error
        return self.value


class TestIsTransientError:

    @pytest.mark.parametrize("error", [
        ConnectionError("reset by peer"),
        TimeoutError(),
        requests.exceptions.ConnectionError(),
        requests.exceptions.Timeout(),
        RuntimeError("503 Service Unavailable"),
        RuntimeError("Read timed out"),
        requests.HTTPError("429 Client Error: Too Many Requests for url: https://mygene.info/v3/query"),
        requests.HTTPError("500 Server Error: Internal Server Error"),
        AssertionError("query failed with error 429"),
        AssertionError("query failed with error 500"),
    ])
    def test_transient(self, error):
        assert is_transient_error(error)

    @pytest.mark.parametrize("error", [
        ValueError("bad query"),
        KeyError("symbol"),
        requests.HTTPError("404 Client Error: Not Found"),
        AssertionError("query failed with error 400"),
    ])
    def test_not_transient(self, error):
        assert not is_transient_error(error)


class TestRetryPolicy:

    def test_exponential_delays(self):
        policy = RetryPolicy(max_retries=4, backoff_factor=0.5)
        assert [policy.delay(k) for k in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_delay_capped(self):
        policy = RetryPolicy(backoff_factor=10.0, max_delay=15.0)
        assert policy.delay(5) == 15.0

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)


class TestCallWithRetry:

    def test_succeeds_after_transient_failures(self):
        sleeps = []
        func = Flaky(2, ConnectionError("connection refused"))
        result = call_with_retry(func, "mygene", RetryPolicy(max_retries=3, backoff_factor=1.0), sleep=sleeps.append)

        assert result == "ok"
        assert func.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_exhausted_retries_raise_service_failure(self):
        sleeps = []
        func = Flaky(10, TimeoutError("timed out"))
        with pytest.raises(ExternalServiceFailure) as exc_info:
            call_with_retry(func, "gprofiler", RetryPolicy(max_retries=2), sleep=sleeps.append)

        assert func.calls == 3
        assert len(sleeps) == 2
        assert exc_info.value.service == "gprofiler"
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.cause, TimeoutError)

    def test_non_transient_error_propagates_immediately(self):
        sleeps = []
        func = Flaky(1, ValueError("malformed request"))
        with pytest.raises(ValueError, match="malformed"):
            call_with_retry(func, "mygene", RetryPolicy(max_retries=5), sleep=sleeps.append)
        assert func.calls == 1
        assert sleeps == []

    def test_first_call_success_no_sleep(self):
        sleeps = []
        assert call_with_retry(lambda: 42, "mygene", sleep=sleeps.append) == 42
        assert sleeps == []


def http_error(status):
    response = requests.Response()
    response.status_code = status
    return requests.HTTPError(f"{status} error", response=response)


class TestHttpStatusClassification:
    """The response status decides for requests' HTTPError."""

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable_status(self, status):
        assert is_transient_error(http_error(status))

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_client_error_status(self, status):
        assert not is_transient_error(http_error(status))

    @pytest.mark.parametrize("error", [
        http_error(429),
        http_error(500),
        requests.HTTPError("429 Client Error: Too Many Requests"),
        AssertionError("query failed with error 429"),
        AssertionError("query failed with error 500"),
    ])
    def test_rate_limit_and_server_errors_exhaust_to_service_failure(self, error):
        sleeps = []
        func = Flaky(10, error)
        with pytest.raises(ExternalServiceFailure) as exc_info:
            call_with_retry(func, "svc", RetryPolicy(max_retries=2), sleep=sleeps.append)

        assert func.calls == 3
        assert len(sleeps) == 2
        assert exc_info.value.cause is error
