"""Retry with exponential backoff and jitter, with retryable vs fatal error classification."""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx
import litellm

from jobrelay.common.config import RetryConfig
from jobrelay.common.errors import FatalError, RetryableError

logger = logging.getLogger("retry")

RETRYABLE_KINDS = (
    RetryableError,
    TimeoutError,
    ConnectionError,
    httpx.TimeoutException,
    httpx.TransportError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)

FATAL_KINDS = (
    FatalError,
    litellm.AuthenticationError,
    litellm.BadRequestError,
    litellm.NotFoundError,
    litellm.PermissionDeniedError,
)

RETRYABLE_MESSAGE_PATTERNS = (
    "timeout",
    "timed out",
    "dependencyfailedexception",
    "try the request again",
    "temporarily unavailable",
    "service unavailable",
    "throttl",
    "rate limit",
)

def is_retryable(exc: BaseException) -> bool:
    """
    Classify an error as transient (worth retrying) or fatal.

    Fatal kinds win over retryable kinds, HTTP responses are classified by
    status code, and anything unrecognised falls back to the message text.
    Unknown errors are fatal.
    """
    if isinstance(exc, FATAL_KINDS):
        return False
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return status_code >= 500 or status_code == 429
    if isinstance(exc, RETRYABLE_KINDS):
        return True
    message = str(exc).lower()
    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)

@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(max_attempts=config.max_attempts, base_delay=config.base_delay)

    def backoff_delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Delay before the retry following zero-based `attempt`, jittered to 50-100%."""
        return self.base_delay * (2 ** attempt) * (0.5 + rng() * 0.5)

def call_with_retry(
    func: Callable[[], Any],
    policy: RetryPolicy = RetryPolicy(),
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    rng: Callable[[], float] = random.random,
) -> Any:
    """
    Call `func` until it succeeds, fails fatally, or `policy.max_attempts` calls
    have been made. The last error propagates unchanged.
    """
    for attempt in range(policy.max_attempts):
        try:
            result = func()
            if attempt > 0:
                logger.info(f"{operation_name} succeeded on attempt {attempt + 1}/{policy.max_attempts}")
            return result
        except Exception as e:
            if not is_retryable(e):
                logger.error(f"{operation_name} failed with non-retryable error: {e}")
                raise

            if attempt >= policy.max_attempts - 1:
                logger.error(f"{operation_name} failed after {policy.max_attempts} attempts: {e}")
                raise

            delay = policy.backoff_delay(attempt, rng)
            logger.warning(
                f"{operation_name} attempt {attempt + 1}/{policy.max_attempts} failed: {e}; "
                f"retrying in {delay:.2f}s"
            )
            sleep(delay)
