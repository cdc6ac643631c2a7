from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from google.api_core import exceptions as google_exceptions

from ad_shipper.llm.json_extract import MalformedResponseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMIT_MARKERS = ("429", "rate limit", "ratelimit", "quota", "resource exhausted", "resource_exhausted")
_SERVER_MARKERS = ("500", "502", "503", "504", "internal error", "server error", "unavailable", "overloaded")
_TIMEOUT_MARKERS = ("timed out", "timeout", "deadline exceeded", "deadline_exceeded")

_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    httpx.TimeoutException,
    google_exceptions.ResourceExhausted,
    google_exceptions.TooManyRequests,
    google_exceptions.InternalServerError,
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.BadGateway,
    google_exceptions.GatewayTimeout,
)


def is_retryable_error(exc: BaseException) -> bool:
    """Rate limits, server errors and timeouts are retryable. Everything else fails immediately."""
    if isinstance(exc, MalformedResponseError):
        return False
    if isinstance(exc, _RETRYABLE_TYPES):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    status_code = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if isinstance(status_code, int) and (status_code == 429 or 500 <= status_code < 600):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in (*_RATE_LIMIT_MARKERS, *_SERVER_MARKERS, *_TIMEOUT_MARKERS))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0
    is_retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows `attempt` (1-based): base * 2^(attempt-1)."""
        return self.base_delay * (2 ** (attempt - 1))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> T:
        sleeper = sleep or asyncio.sleep
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.is_retryable(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "retry.attempt_failed",
                    extra={
                        "label": label,
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "delay_seconds": delay,
                        "error": str(exc),
                    },
                )
                await sleeper(delay)
                attempt += 1
