"""
Call Resilience

Deadline and retry policy wrapped around every generator and evaluator call.
Timeouts and rate limits are retried with exponential backoff up to a fixed
number of attempts; anything else fails the step immediately.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from proposal_engine.errors import UpstreamRateLimited, UpstreamTimeout, WorkflowError, classify_error

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (UpstreamTimeout, UpstreamRateLimited)


@dataclass(frozen=True)
class CallPolicy:
    timeout: float = 120.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0

    @classmethod
    def from_settings(cls, settings) -> "CallPolicy":
        return cls(
            timeout=settings.STEP_TIMEOUT_SECONDS,
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            backoff_base=settings.RETRY_BACKOFF_BASE,
            backoff_max=settings.RETRY_BACKOFF_MAX,
        )

    def build_retryer(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )


async def _call_once(fn: Callable[..., Awaitable[Any]], timeout: float, label: str, *args, **kwargs) -> Any:
    try:
        return await asyncio.wait_for(fn(*args, **kwargs), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise UpstreamTimeout(f"{label} exceeded its {timeout:g}s deadline") from e
    except WorkflowError:
        raise
    except Exception as e:
        classified = classify_error(e)
        if classified.retryable:
            raise classified from e
        raise


async def call_with_resilience(
    fn: Callable[..., Awaitable[Any]],
    *args,
    policy: CallPolicy,
    label: str = "upstream call",
    **kwargs,
) -> Any:
    """
    Await fn(*args, **kwargs) under the policy's deadline and retry rules.

    Raises:
        UpstreamTimeout / UpstreamRateLimited: after the last attempt
        Any non-retryable error from fn, unchanged
    """
    async for attempt in policy.build_retryer():
        with attempt:
            result = await _call_once(fn, policy.timeout, label, *args, **kwargs)
    return result
