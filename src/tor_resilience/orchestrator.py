"""
Resilience Orchestrator for the tor_resilience package.

Builds every component from one SystemConfig and runs the long-lived
loops the configuration asks for:
- Exit-country restriction applied once at start (``exit_country``)
- Health monitoring with bridge fallback (``auto_fallback``)
- Periodic bridge acquisition (``auto_collect_bridges``)

The fallback engine and the collector share one bridge store, at
``bridges.store_path``, and one scoreboard.
"""

import asyncio
from typing import Optional

from .audit_logger import AuditLogger
from .bridge_store import BridgeStore
from .collector import BridgeCollector, BridgeScoreboard
from .config import SystemConfig
from .control_session import ControlSession
from .country import ExitCountrySelector
from .discovery import DiscoveryClient
from .enums import LogLevel
from .exceptions import ConfigError, TorResilienceError
from .fallback import FallbackEngine, SessionFactory
from .probe import BridgeProber
from .retry_manager import SleepFunc


class ResilienceOrchestrator:
    """
    Wires configuration into components and supervises their loops.

    Usage:
        async with ResilienceOrchestrator(load_config(path), logger=logger) as orchestrator:
            await orchestrator.run(stop_event)
    """

    COMPONENT = "Orchestrator"

    async def __aenter__(self) -> "ResilienceOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __init__(
        self,
        config: SystemConfig,
        session_factory: Optional[SessionFactory] = None,
        prober: Optional[BridgeProber] = None,
        discovery: Optional[DiscoveryClient] = None,
        logger: Optional[AuditLogger] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: System configuration
            session_factory: Builds control sessions (defaults to config.control)
            prober: Reachability prober shared by fallback and collection
            discovery: Discovery client (defaults to config.bridges)
            logger: Optional audit logger
            sleep: Awaitable sleep for the fallback backoff
        """
        self._config = config
        self._logger = logger
        self._session_factory = session_factory or (
            lambda: ControlSession(config.control, logger)
        )

        self._store = BridgeStore(config.bridges.store_path, logger)
        self._scoreboard = BridgeScoreboard()
        self._selector = ExitCountrySelector(logger)

        self._engine = FallbackEngine(
            config.fallback,
            store=self._store,
            control_config=config.control,
            session_factory=self._session_factory,
            prober=prober,
            scoreboard=self._scoreboard,
            logger=logger,
            sleep=sleep,
        )
        self._collector = BridgeCollector(
            self._store,
            config.bridges,
            discovery=discovery,
            prober=prober,
            scoreboard=self._scoreboard,
            logger=logger,
        )
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def config(self) -> SystemConfig:
        return self._config

    @property
    def store(self) -> BridgeStore:
        return self._store

    @property
    def engine(self) -> FallbackEngine:
        return self._engine

    @property
    def collector(self) -> BridgeCollector:
        return self._collector

    async def apply_exit_country(self) -> Optional[list[str]]:
        """
        Apply the configured exit countries, if any.

        Returns:
            The applied codes, or None when no exit country is configured

        Raises:
            ConfigError: If the configured codes are invalid (checked before
                any connection is made)
            TorResilienceError: If the daemon cannot be reached or refuses
        """
        if not self._config.exit_country:
            return None

        self._selector.validate_country_codes(self._config.exit_country)

        session = self._session_factory()
        try:
            await session.connect()
            await session.authenticate()
            return await self._selector.set_exit_country(session, self._config.exit_country)
        finally:
            await session.close()

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run the configured loops until stop_event is set or stop() is called.

        A daemon failure while applying the exit country is logged and the
        loops start anyway; invalid configuration propagates.
        """
        self._stop_event = stop_event or asyncio.Event()

        try:
            await self.apply_exit_country()
        except ConfigError:
            raise
        except TorResilienceError as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Failed to apply exit country", e)

        tasks = []
        if self._config.auto_fallback:
            tasks.append(asyncio.create_task(self._engine.monitor(stop_event=self._stop_event)))
        if self._config.auto_collect_bridges:
            tasks.append(asyncio.create_task(self._collector.auto_collect(stop_event=self._stop_event)))

        self._log(
            LogLevel.INFO,
            "Orchestrator started",
            {
                "auto_fallback": self._config.auto_fallback,
                "auto_collect_bridges": self._config.auto_collect_bridges,
                "bridge_file": str(self._store.file_path),
            },
        )

        try:
            await self._stop_event.wait()
        finally:
            self._stop_event.set()
            await asyncio.gather(*tasks)
            self._log(LogLevel.INFO, "Orchestrator stopped")

    def stop(self) -> None:
        """Signal run to finish."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def close(self) -> None:
        await self._collector.close()

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
