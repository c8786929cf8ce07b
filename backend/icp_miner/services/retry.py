# backend/icp_miner/services/retry.py
"""
Uniform retry-with-backoff for external calls.

Network-class failures (transport errors, timeouts, HTTP 429/5xx, dropped DB
connections) are retried with exponential backoff up to a small attempt
ceiling. Semantic "no result" outcomes and client errors are raised at once.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from sqlalchemy.exc import InterfaceError, OperationalError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from icp_miner.config import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def is_retryable(exc: BaseException) -> bool:
    """True for network-class errors only."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(
        exc,
        (httpx.TransportError, asyncio.TimeoutError, OperationalError, InterfaceError),
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling, per-attempt timeout and backoff bounds."""

    max_attempts: int = 3
    timeout_seconds: Optional[float] = 30.0
    backoff_min: float = 1.0
    backoff_max: float = 10.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.EXTERNAL_CALL_MAX_ATTEMPTS,
            timeout_seconds=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
            backoff_min=settings.RETRY_BACKOFF_MIN_SECONDS,
            backoff_max=settings.RETRY_BACKOFF_MAX_SECONDS,
        )

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func(*args, **kwargs)`` under this policy; re-raises the last error."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if self.timeout_seconds:
                    return await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout_seconds)
                return await func(*args, **kwargs)


# Single attempt, no per-call timeout
NO_RETRY = RetryPolicy(max_attempts=1, timeout_seconds=None, backoff_min=0, backoff_max=0)
