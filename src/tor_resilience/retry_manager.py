"""
Retry Manager for the tor_resilience package.

Runs an async attempt repeatedly with exponential backoff between attempts:
delay(n) = base_delay * 2^n, capped at max_delay, and no delay after the
final attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .config import RetryConfig

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class RetryResult:
    """Result of a retried operation."""

    success: bool
    attempts: int
    delays: list[float] = field(default_factory=list)
    last_error: Optional[Exception] = None


class RetryManager:
    """
    Manages retry logic with exponential backoff.

    An attempt fails when it returns False or raises; the exception is kept
    as ``last_error`` and, unless ``is_retryable`` rejects it, the next
    attempt follows after the backoff delay.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        """
        Args:
            config: Attempt ceiling and delay settings
            sleep: Awaitable sleep used between attempts (asyncio.sleep by default)
        """
        self._config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay after the given failed attempt (0-indexed).

        With the defaults: 1s, 2s, 4s, 8s, ...
        """
        delay = self._config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._config.max_delay_seconds)

    async def execute(
        self,
        operation: Callable[[], Awaitable[bool]],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
        on_retry: Optional[Callable[[int, float], None]] = None,
    ) -> RetryResult:
        """
        Run operation until it returns True or the attempts run out.

        Args:
            operation: Async attempt returning True on success
            is_retryable: Decides whether a raised exception may be retried;
                all exceptions are retried when omitted
            on_retry: Called with (failed attempt number, delay) before sleeping

        Returns:
            RetryResult with the attempt count and the delays applied
        """
        delays: list[float] = []
        last_error: Optional[Exception] = None
        attempts = 0

        while attempts < self._config.max_attempts:
            attempts += 1
            try:
                if await operation():
                    return RetryResult(
                        success=True,
                        attempts=attempts,
                        delays=delays,
                        last_error=None,
                    )
            except Exception as e:
                last_error = e
                if is_retryable is not None and not is_retryable(e):
                    break

            if attempts >= self._config.max_attempts:
                break

            delay = self.calculate_delay(attempts - 1)
            if on_retry is not None:
                on_retry(attempts, delay)
            delays.append(delay)
            await self._sleep(delay)

        return RetryResult(
            success=False,
            attempts=attempts,
            delays=delays,
            last_error=last_error,
        )
