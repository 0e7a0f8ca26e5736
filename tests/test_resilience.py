import asyncio
import json

import pytest

from proposal_engine.errors import (
    CheckpointIOError,
    ErrorCategory,
    InputMissing,
    ParsingError,
    UpstreamRateLimited,
    UpstreamTimeout,
    WorkflowError,
    classify_error,
)
from proposal_engine.resilience import CallPolicy, call_with_resilience

FAST = CallPolicy(timeout=0.05, max_attempts=3, backoff_base=0, backoff_max=0)


class Flaky:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


async def test_retries_transient_failures_then_succeeds():
    fn = Flaky([RuntimeError("429 resource exhausted"), UpstreamTimeout("slow")])
    assert await call_with_resilience(fn, policy=FAST) == "ok"
    assert fn.calls == 3


async def test_gives_up_after_max_attempts():
    fn = Flaky([RuntimeError("rate limit exceeded")] * 5)
    with pytest.raises(UpstreamRateLimited):
        await call_with_resilience(fn, policy=FAST)
    assert fn.calls == 3


async def test_deadline_becomes_upstream_timeout():
    calls = []

    async def slow():
        calls.append(1)
        await asyncio.sleep(1)

    with pytest.raises(UpstreamTimeout):
        await call_with_resilience(slow, policy=FAST, label="slow call")
    assert len(calls) == 3


async def test_non_retryable_errors_fail_immediately():
    fn = Flaky([ParsingError("bad json")])
    with pytest.raises(ParsingError):
        await call_with_resilience(fn, policy=FAST)
    assert fn.calls == 1

    plain = Flaky([KeyError("missing")])
    with pytest.raises(KeyError):
        await call_with_resilience(plain, policy=FAST)
    assert plain.calls == 1


async def test_arguments_are_forwarded():
    async def echo(a, b=None):
        return (a, b)

    assert await call_with_resilience(echo, 1, b=2, policy=FAST) == (1, 2)


class ProviderError(Exception):
    def __init__(self, code, message=""):
        super().__init__(message)
        self.code = code


@pytest.mark.parametrize("exc,category", [
    (asyncio.TimeoutError(), ErrorCategory.UPSTREAM_TIMEOUT),
    (ConnectionError("connection reset by peer"), ErrorCategory.UPSTREAM_TIMEOUT),
    (RuntimeError("503 Service Unavailable"), ErrorCategory.UPSTREAM_TIMEOUT),
    (RuntimeError("429 Too Many Requests"), ErrorCategory.UPSTREAM_RATE_LIMITED),
    (ProviderError(429, "quota"), ErrorCategory.UPSTREAM_RATE_LIMITED),
    (ProviderError(503), ErrorCategory.UPSTREAM_TIMEOUT),
    (ProviderError(400, "request timed out"), ErrorCategory.UNKNOWN),
    (json.JSONDecodeError("Expecting value", "", 0), ErrorCategory.PARSING),
    (ValueError("could not parse response"), ErrorCategory.PARSING),
    (RuntimeError("boom"), ErrorCategory.UNKNOWN),
])
def test_classify_error(exc, category):
    assert classify_error(exc).category == category


@pytest.mark.parametrize("message", [
    "invalid connection string format",
    "checkpoint volume full",
    "unexpected response format from tool",
])
def test_vague_messages_stay_unclassified(message):
    error = classify_error(RuntimeError(message))
    assert type(error) is WorkflowError
    assert not error.retryable and not error.fatal


def test_classified_errors_carry_flags():
    assert classify_error(RuntimeError("rate limit")).retryable
    io_error = CheckpointIOError("disk full")
    assert classify_error(io_error) is io_error and io_error.fatal
    missing = InputMissing("no document")
    assert classify_error(missing) is missing
    assert missing.fatal and not missing.retryable
    assert type(classify_error(RuntimeError(""))) is WorkflowError
