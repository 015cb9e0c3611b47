"""
Fallback engine.

Watches the primary path through the control port and, when it is
unhealthy, walks the stored bridges looking for one that accepts a TCP
connection. Failures are folded into booleans and phases; only structural
errors (bad configuration) propagate.

Phases:
    CHECKING -> ACTIVE                        primary healthy
    CHECKING -> DEGRADED -> TESTING_BRIDGES   primary unhealthy
    TESTING_BRIDGES -> FALLBACK_ACTIVE        a bridge answered
    TESTING_BRIDGES -> EXHAUSTED              none answered
    EXHAUSTED -> RETRYING -> TESTING_BRIDGES  backoff between attempts
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .bridge_store import BridgeStore
from .bridges import Bridge
from .circuits import CircuitInspector
from .collector import BridgeScoreboard, Clock, utc_now
from .config import DEFAULT_BRIDGE_FILE, ControlConfig, FallbackConfig
from .control_session import ControlSession
from .enums import FallbackPhase, LogLevel
from .exceptions import BridgeStoreError, TorResilienceError
from .probe import BridgeProber
from .retry_manager import RetryManager, SleepFunc

SessionFactory = Callable[[], ControlSession]


@dataclass
class FallbackState:
    """Mutable state of the fallback engine."""

    retry_count: int = 0
    last_attempt: Optional[datetime] = None
    fallback_active: bool = False
    phase: FallbackPhase = FallbackPhase.CHECKING

    def reset(self) -> None:
        self.retry_count = 0
        self.last_attempt = None
        self.fallback_active = False
        self.phase = FallbackPhase.CHECKING


@dataclass
class FallbackResult:
    """Outcome of a retried fallback."""

    success: bool
    attempts: int
    bridge: Optional[Bridge] = None


class FallbackEngine:
    """
    Health checking and bridge fallback with bounded retries.

    Usage:
        engine = FallbackEngine(config.fallback, BridgeStore(path))
        if not await engine.check_primary_health():
            result = await engine.attempt_fallback_with_retry()
    """

    COMPONENT = "FallbackEngine"

    def __init__(
        self,
        config: Optional[FallbackConfig] = None,
        store: Optional[BridgeStore] = None,
        control_config: Optional[ControlConfig] = None,
        session_factory: Optional[SessionFactory] = None,
        prober: Optional[BridgeProber] = None,
        scoreboard: Optional[BridgeScoreboard] = None,
        logger: Optional[AuditLogger] = None,
        sleep: Optional[SleepFunc] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """
        Args:
            config: Health/bridge timeouts and retry settings
            store: Bridge store holding the fallback candidates
            control_config: Settings for health-check sessions
            session_factory: Builds a fresh ControlSession per health check
            prober: Reachability prober
            scoreboard: Optional scoreboard that receives probe outcomes
            logger: Optional audit logger
            sleep: Awaitable sleep for the retry backoff
            clock: Returns the current UTC time
        """
        self._config = config or FallbackConfig()
        self._store = store or BridgeStore(DEFAULT_BRIDGE_FILE, logger)
        self._control_config = control_config or ControlConfig()
        self._session_factory = session_factory or (
            lambda: ControlSession(self._control_config, logger)
        )
        self._prober = prober or BridgeProber(self._config.bridge_timeout_seconds, logger)
        self._scoreboard = scoreboard
        self._logger = logger
        self._clock = clock or utc_now
        self._retry_manager = RetryManager(self._config.retry, sleep)
        self._circuits = CircuitInspector(logger)
        self._state = FallbackState()
        self._active_bridge: Optional[Bridge] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def state(self) -> FallbackState:
        return self._state

    @property
    def phase(self) -> FallbackPhase:
        return self._state.phase

    @property
    def active_bridge(self) -> Optional[Bridge]:
        return self._active_bridge

    def reset(self) -> None:
        """Forget all fallback state and return to CHECKING."""
        self._state.reset()
        self._active_bridge = None

    def time_since_last_attempt(self) -> Optional[timedelta]:
        if self._state.last_attempt is None:
            return None
        return self._clock() - self._state.last_attempt

    async def check_primary_health(self) -> bool:
        """
        Check that the daemon answers and has an established circuit.

        Connect, authenticate and the circuit query share one timeout. Any
        failure counts as unhealthy; the session is always closed.
        """
        self._state.phase = FallbackPhase.CHECKING
        self._log(LogLevel.INFO, "Checking primary connection health")

        session = self._session_factory()
        try:
            healthy = await asyncio.wait_for(
                self._query_primary(session),
                timeout=self._config.health_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._log(
                LogLevel.WARN,
                f"Health check timed out after {self._config.health_timeout_seconds}s",
            )
            healthy = False
        except (TorResilienceError, OSError) as e:
            self._log(LogLevel.WARN, f"Health check failed: {e}")
            healthy = False
        finally:
            await session.close()

        if healthy:
            self._state.phase = FallbackPhase.ACTIVE
            self._log(LogLevel.INFO, "Primary connection healthy")
        else:
            self._state.phase = FallbackPhase.DEGRADED
            self._log(LogLevel.WARN, "Primary connection unhealthy")
        return healthy

    async def attempt_fallback(self) -> bool:
        """
        Probe stored bridges until one is reachable.

        Returns:
            True if a bridge answered; it becomes the active bridge
        """
        self._state.last_attempt = self._clock()
        self._state.phase = FallbackPhase.TESTING_BRIDGES

        try:
            bridges = self._store.list()
        except BridgeStoreError as e:
            self._log(LogLevel.ERROR, f"Failed to load bridges: {e.message}")
            bridges = []

        if not bridges:
            self._log(LogLevel.WARN, "No bridges configured for fallback")
            self._state.phase = FallbackPhase.EXHAUSTED
            return False

        if self._config.order_by_score and self._scoreboard is not None:
            bridges = self._scoreboard.order(bridges)

        self._log(LogLevel.INFO, f"Attempting fallback across {len(bridges)} bridges")

        for bridge in bridges:
            result = await self._prober.probe(bridge, self._config.bridge_timeout_seconds)
            if self._scoreboard is not None:
                if result.reachable:
                    self._scoreboard.record_success(bridge.key)
                else:
                    self._scoreboard.record_failure(bridge.key)

            if result.reachable:
                self._active_bridge = bridge
                self._state.fallback_active = True
                self._state.retry_count = 0
                self._state.phase = FallbackPhase.FALLBACK_ACTIVE
                self._log(LogLevel.INFO, f"Fallback bridge active: {bridge.key}")
                return True

        self._state.phase = FallbackPhase.EXHAUSTED
        self._log(LogLevel.WARN, "All bridges failed connectivity test")
        return False

    async def attempt_fallback_with_retry(self) -> FallbackResult:
        """
        Run attempt_fallback with exponential backoff between attempts.

        Returns:
            FallbackResult; on exhaustion retry_count equals the attempt ceiling
        """
        result = await self._retry_manager.execute(
            self.attempt_fallback,
            on_retry=self._on_retry,
        )

        if result.success:
            self._state.retry_count = 0
            return FallbackResult(success=True, attempts=result.attempts, bridge=self._active_bridge)

        self._state.retry_count = result.attempts
        self._state.phase = FallbackPhase.EXHAUSTED
        self._log(
            LogLevel.ERROR,
            f"Max retries ({self._retry_manager.max_attempts}) reached",
            {"attempts": result.attempts},
        )
        return FallbackResult(success=False, attempts=result.attempts)

    async def run_cycle(self) -> bool:
        """
        One health check, followed by fallback if the primary is unhealthy.

        Returns:
            True if traffic has a working path afterwards
        """
        if await self.check_primary_health():
            return True
        result = await self.attempt_fallback_with_retry()
        return result.success

    async def monitor(
        self,
        interval_seconds: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Run cycles until stop_event is set or stop() is called.

        A failing cycle is logged and the loop carries on.
        """
        interval = (
            self._config.monitor_interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        self._stop_event = stop_event or asyncio.Event()

        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                if self._logger:
                    self._logger.log_error(self.COMPONENT, "Fallback cycle failed", e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def stop(self) -> None:
        """Signal monitor to finish."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def _query_primary(self, session: ControlSession) -> bool:
        await session.connect()
        await session.authenticate()
        return await self._circuits.is_circuit_established(session)

    def _on_retry(self, attempt: int, delay: float) -> None:
        self._state.retry_count = attempt
        self._state.phase = FallbackPhase.RETRYING
        self._log(
            LogLevel.INFO,
            f"Retrying fallback in {delay}s",
            {"attempt": attempt, "delay_seconds": delay},
        )

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
