"""
Bounded retry with exponential backoff.

Wraps tenacity so call sites describe *what* to retry and the policy
object owns *how*: attempt count, delay schedule, and the sleep
function (injectable so tests never wait).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Retry configuration.

    Delay before attempt n+1 is initial_delay * multiplier**(n-1),
    capped at max_delay.
    """
    max_attempts: int = 5
    initial_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")

    def delays(self) -> list[float]:
        """Delays slept between attempts (one fewer than max_attempts)."""
        return [
            min(self.initial_delay * self.multiplier ** n, self.max_delay)
            for n in range(self.max_attempts - 1)
        ]

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        retry_on: tuple[type[BaseException], ...] = (StoreError,),
        **kwargs: Any,
    ) -> T:
        """
        Run ``fn`` until it succeeds or attempts run out.

        The last exception is re-raised unchanged when every attempt fails.
        Exceptions outside ``retry_on`` propagate immediately.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_delay,
                max=self.max_delay,
                exp_base=self.multiplier,
            ),
            retry=retry_if_exception_type(retry_on),
            sleep=self.sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await fn(*args, **kwargs)
        raise AssertionError("unreachable: tenacity reraises on exhaustion")

    @staticmethod
    def _log_retry(retry_state: Any) -> None:
        outcome = retry_state.outcome
        logger.warning(
            "Retrying after failure",
            extra={
                "attempt": retry_state.attempt_number,
                "error": str(outcome.exception()) if outcome else "",
            }
        )
