import asyncio

import httpx
import pytest
from google.api_core import exceptions as google_exceptions

from ad_shipper.llm.json_extract import MalformedResponseError
from ad_shipper.services.retry import RetryPolicy, is_retryable_error


class _Flaky:
    def __init__(self, errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def _run_policy(policy, operation):
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    result = asyncio.run(policy.run(operation, label="test", sleep=_sleep))
    return result, delays


def test_retry_succeeds_after_transient_failures_with_exponential_backoff():
    operation = _Flaky([google_exceptions.ResourceExhausted("quota"), asyncio.TimeoutError()])

    result, delays = _run_policy(RetryPolicy(max_attempts=3, base_delay=2.0), operation)

    assert result == "ok"
    assert operation.calls == 3
    assert delays == [2.0, 4.0]


def test_retry_gives_up_after_max_attempts():
    operation = _Flaky([google_exceptions.ServiceUnavailable("down")] * 5)

    with pytest.raises(google_exceptions.ServiceUnavailable):
        _run_policy(RetryPolicy(max_attempts=3, base_delay=1.0), operation)
    assert operation.calls == 3


def test_malformed_response_is_not_retried():
    operation = _Flaky([MalformedResponseError("bad json")])

    with pytest.raises(MalformedResponseError):
        _run_policy(RetryPolicy(max_attempts=3, base_delay=1.0), operation)
    assert operation.calls == 1


def test_non_retryable_error_fails_immediately():
    operation = _Flaky([ValueError("schema mismatch")])

    with pytest.raises(ValueError):
        _run_policy(RetryPolicy(max_attempts=3, base_delay=1.0), operation)
    assert operation.calls == 1


def test_is_retryable_error_classification():
    request = httpx.Request("POST", "https://example.com")
    assert is_retryable_error(
        httpx.HTTPStatusError("busy", request=request, response=httpx.Response(503, request=request))
    )
    assert is_retryable_error(
        httpx.HTTPStatusError("slow down", request=request, response=httpx.Response(429, request=request))
    )
    assert not is_retryable_error(
        httpx.HTTPStatusError("nope", request=request, response=httpx.Response(400, request=request))
    )
    assert is_retryable_error(RuntimeError("Request timed out"))
    assert not is_retryable_error(RuntimeError("invalid argument"))
