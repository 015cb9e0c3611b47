"""
Property-based tests for the Retry Manager module.

Uses Hypothesis for property-based testing of the backoff schedule and the
attempt ceiling. Sleeping is replaced by a recorder so no test waits.
"""

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from tor_resilience.config import RetryConfig
from tor_resilience.retry_manager import RetryManager, RetryResult


# Strategies for generating test data

@st.composite
def retry_config_strategy(draw) -> RetryConfig:
    """Generate valid RetryConfig objects."""
    return RetryConfig(
        max_attempts=draw(st.integers(min_value=1, max_value=8)),
        base_delay_seconds=draw(st.floats(min_value=0.001, max_value=5.0)),
        max_delay_seconds=draw(st.floats(min_value=5.0, max_value=120.0)),
    )


class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep that records each delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestExponentialBackoffProperty:
    """
    Property 21: Delays double from the base delay, capped at the maximum.
    """

    @given(config=retry_config_strategy(), attempt=st.integers(min_value=0, max_value=12))
    @settings(max_examples=100)
    def test_delay_formula(self, config: RetryConfig, attempt: int) -> None:
        """
        *For any* configuration and attempt number n, the delay SHALL be
        min(base * 2^n, max_delay).
        """
        delay = RetryManager(config).calculate_delay(attempt)
        expected = min(config.base_delay_seconds * (2 ** attempt), config.max_delay_seconds)

        assert abs(delay - expected) < 1e-9
        assert delay <= config.max_delay_seconds

    @given(config=retry_config_strategy())
    @settings(max_examples=100)
    def test_delays_non_decreasing(self, config: RetryConfig) -> None:
        manager = RetryManager(config)
        delays = [manager.calculate_delay(n) for n in range(10)]
        assert delays == sorted(delays)

    def test_default_schedule(self) -> None:
        manager = RetryManager()
        assert [manager.calculate_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]


class TestAttemptCeilingProperty:
    """
    Property 22: An always-failing operation runs exactly max_attempts times,
    with no sleep after the last attempt.
    """

    @given(config=retry_config_strategy(), raise_error=st.booleans())
    @settings(max_examples=100, deadline=None)
    def test_exhaustion(self, config: RetryConfig, raise_error: bool) -> None:
        """
        *For any* configuration, failing every attempt SHALL make exactly
        max_attempts calls and max_attempts - 1 sleeps.
        """
        sleep = SleepRecorder()
        manager = RetryManager(config, sleep=sleep)
        calls = 0

        async def failing() -> bool:
            nonlocal calls
            calls += 1
            if raise_error:
                raise OSError("unreachable")
            return False

        result = asyncio.run(manager.execute(failing))

        assert not result.success
        assert result.attempts == config.max_attempts
        assert calls == config.max_attempts
        assert sleep.delays == result.delays
        assert result.delays == [manager.calculate_delay(n) for n in range(config.max_attempts - 1)]
        assert (result.last_error is not None) == raise_error

    @given(config=retry_config_strategy(), succeed_on=st.integers(min_value=1, max_value=8))
    @settings(max_examples=100, deadline=None)
    def test_stops_on_first_success(self, config: RetryConfig, succeed_on: int) -> None:
        """
        *For any* operation that succeeds on attempt k <= max_attempts, the
        manager SHALL stop after k attempts and k - 1 sleeps.
        """
        sleep = SleepRecorder()
        manager = RetryManager(config, sleep=sleep)
        calls = 0

        async def eventually() -> bool:
            nonlocal calls
            calls += 1
            return calls >= succeed_on

        result: RetryResult = asyncio.run(manager.execute(eventually))

        if succeed_on <= config.max_attempts:
            assert result.success
            assert result.attempts == succeed_on
            assert len(sleep.delays) == succeed_on - 1
        else:
            assert not result.success
            assert result.attempts == config.max_attempts

    def test_non_retryable_error_stops_immediately(self) -> None:
        sleep = SleepRecorder()
        manager = RetryManager(RetryConfig(max_attempts=4), sleep=sleep)

        async def broken() -> bool:
            raise ValueError("bad configuration")

        result = asyncio.run(manager.execute(broken, is_retryable=lambda e: not isinstance(e, ValueError)))

        assert result.attempts == 1
        assert sleep.delays == []
        assert isinstance(result.last_error, ValueError)

    def test_on_retry_callback(self) -> None:
        seen = []
        manager = RetryManager(RetryConfig(max_attempts=3), sleep=SleepRecorder())

        async def failing() -> bool:
            return False

        asyncio.run(manager.execute(failing, on_retry=lambda attempt, delay: seen.append((attempt, delay))))

        assert seen == [(1, 1.0), (2, 2.0)]
