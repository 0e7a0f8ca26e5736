"""
Workflow Error Taxonomy

Typed exceptions raised inside the engine and the classification helper the
runner uses to turn arbitrary node failures into error records.
"""

import asyncio
import json
import re
from enum import Enum
from typing import Optional

from pydantic import ValidationError


class ErrorCategory(str, Enum):
    INPUT_MISSING = "input_missing"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    UPSTREAM_RATE_LIMITED = "upstream_rate_limited"
    PARSING = "parsing"
    DEPENDENCY_CONFIG = "dependency_config"
    CALLER_MISUSE = "caller_misuse"
    CHECKPOINT_IO = "checkpoint_io"
    UNKNOWN = "unknown"


class WorkflowError(Exception):
    """Base class for every error the engine raises on purpose."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    retryable: bool = False
    fatal: bool = False

    def __init__(self, message: str = "", *, thread_id: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.thread_id = thread_id


# --- Input / document errors ---

class InputMissing(WorkflowError):
    category = ErrorCategory.INPUT_MISSING
    fatal = True


class DocumentNotFound(InputMissing):
    pass


class DocumentUnauthorized(InputMissing):
    pass


class DocumentParseError(InputMissing):
    pass


# --- Upstream (generator / evaluator) errors ---

class UpstreamTimeout(WorkflowError):
    category = ErrorCategory.UPSTREAM_TIMEOUT
    retryable = True


class UpstreamRateLimited(WorkflowError):
    category = ErrorCategory.UPSTREAM_RATE_LIMITED
    retryable = True


class ParsingError(WorkflowError):
    category = ErrorCategory.PARSING


# --- Configuration errors ---

class DependencyConfigInvalid(WorkflowError):
    category = ErrorCategory.DEPENDENCY_CONFIG
    fatal = True


# --- Caller misuse ---

class NoActiveInterrupt(WorkflowError):
    category = ErrorCategory.CALLER_MISUSE


class InvalidStaleDecision(WorkflowError):
    category = ErrorCategory.CALLER_MISUSE


class InvalidFeedback(WorkflowError):
    category = ErrorCategory.CALLER_MISUSE


class ThreadNotFound(WorkflowError):
    category = ErrorCategory.CALLER_MISUSE


# --- Persistence ---

class CheckpointIOError(WorkflowError):
    category = ErrorCategory.CHECKPOINT_IO
    fatal = True


_RATE_LIMITED = re.compile(r"\b429\b|rate[ _-]?limit|resource[ _]exhausted", re.IGNORECASE)
_UNAVAILABLE = re.compile(
    r"\btimed out\b|\btimeout\b|deadline exceeded|\b50[234]\b|service unavailable", re.IGNORECASE
)
_UNPARSEABLE = re.compile(r"\b(?:could not|cannot|failed to|unable to) parse\b|malformed (?:json|output|response)",
                          re.IGNORECASE)

# HTTP statuses that mean the provider is overloaded or briefly unreachable
_RETRYABLE_STATUSES = {408, 500, 502, 503, 504}


def _status_code(exc: BaseException) -> Optional[int]:
    """HTTP status carried by provider SDK errors (code / status_code / response)."""
    for holder in (exc, getattr(exc, "response", None)):
        for attr in ("status_code", "code"):
            value = getattr(holder, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


def classify_error(exc: BaseException) -> WorkflowError:
    """
    Map any exception raised by a node onto the workflow taxonomy.

    Typed workflow errors pass through unchanged. Everything else is matched
    on its type, then on the HTTP status a provider SDK attached, and only
    then on a few unambiguous phrases in its message.

    Returns:
        A WorkflowError instance (never raises)
    """
    if isinstance(exc, WorkflowError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return UpstreamTimeout(str(exc) or "Upstream call timed out")
    if isinstance(exc, (json.JSONDecodeError, ValidationError)):
        return ParsingError(str(exc))

    message = str(exc)
    status = _status_code(exc)
    if status == 429:
        return UpstreamRateLimited(message or "Upstream rate limit reached")
    if status in _RETRYABLE_STATUSES:
        return UpstreamTimeout(message or f"Upstream returned {status}")
    if status is not None:
        return WorkflowError(message or f"Upstream returned {status}")

    if _RATE_LIMITED.search(message):
        return UpstreamRateLimited(message)
    if _UNAVAILABLE.search(message):
        return UpstreamTimeout(message)
    if _UNPARSEABLE.search(message):
        return ParsingError(message)

    return WorkflowError(message or exc.__class__.__name__)
