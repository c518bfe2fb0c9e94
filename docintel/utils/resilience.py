"""Timeout and retry wrapper for calls to external services.

Every outbound call made by the pipeline (recognition engines, the
completion service, the inference service) goes through
:func:`call_with_retry`, which bounds each attempt with a timeout, retries
transient failures with increasing backoff, and grants a single extra
wait-and-retry cycle when a hosted model reports that it is still loading.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from docintel.exceptions import (
    ModelWarmingUpError,
    ServiceTimeoutError,
    TransientServiceError,
)
from docintel.utils.config import RetryConfig
from docintel.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Timeout and retry budget for one external call site."""

    timeout_seconds: float
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    exponential: bool = False
    warmup_wait_seconds: float = 10.0
    retry_on_timeout: bool = True

    @classmethod
    def from_config(cls, config: RetryConfig, timeout_seconds: float) -> "RetryPolicy":
        return cls(
            timeout_seconds=timeout_seconds,
            max_attempts=max(1, config.max_attempts),
            backoff_seconds=config.backoff_seconds,
            exponential=config.backoff == "exponential",
            warmup_wait_seconds=config.warmup_wait_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        if self.exponential:
            return self.backoff_seconds * (2 ** (attempt - 1))
        return self.backoff_seconds * attempt


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str,
) -> T:
    """Run ``func`` under ``policy`` and return its result.

    Only :class:`TransientServiceError` (including timeouts) is retried;
    any other exception propagates on the first occurrence. A
    :class:`ModelWarmingUpError` is answered once with a longer wait that
    does not consume an attempt. With ``retry_on_timeout`` off, the first
    timeout is raised without retrying.

    Args:
        func: Zero-argument coroutine factory performing the call.
        policy: Timeout and retry budget.
        label: Name used in log messages.

    Returns:
        Whatever ``func`` returns.

    Raises:
        TransientServiceError: The last transient failure once the budget
            is exhausted.
    """
    warmup_granted = False
    attempt = 0
    last_error: TransientServiceError | None = None

    while attempt < policy.max_attempts:
        attempt += 1
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_seconds)
        except asyncio.TimeoutError:
            last_error = ServiceTimeoutError(
                f"{label} timed out after {policy.timeout_seconds:.0f}s"
            )
        except ModelWarmingUpError as exc:
            last_error = exc
            if not warmup_granted:
                warmup_granted = True
                wait = exc.estimated_time or policy.warmup_wait_seconds
                wait = min(wait, policy.warmup_wait_seconds)
                logger.info("%s: model loading, waiting %.1fs before retrying", label, wait)
                await asyncio.sleep(wait)
                attempt -= 1
                continue
        except TransientServiceError as exc:
            last_error = exc

        if isinstance(last_error, ServiceTimeoutError) and not policy.retry_on_timeout:
            logger.warning("%s: %s; not retrying", label, last_error)
            raise last_error

        logger.warning(
            "%s: attempt %d/%d failed: %s",
            label,
            attempt,
            policy.max_attempts,
            last_error,
        )
        if attempt < policy.max_attempts:
            await asyncio.sleep(policy.delay_for(attempt))

    assert last_error is not None
    raise last_error
