"""
Bridge acquisition and prioritisation.

BridgeCollector pulls candidate bridges from the discovery endpoint, probes
them, and persists the reachable ones to the bridge store. Probe outcomes are
tallied in a BridgeScoreboard, a process-local mapping keyed by
``address:port`` that lives apart from the persisted Bridge records and is
rebuilt empty on restart.

Score of a bridge:

    score = success_rate + recency_bonus
    recency_bonus = (7 - days_since_last_success) * 5   if fewer than 7 days
                  = 0                                    otherwise
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .bridge_store import BridgeStore
from .bridges import Bridge, dedupe_bridges
from .config import BridgeConfig
from .discovery import DiscoveryClient
from .enums import BridgeErrorCode, LogLevel
from .exceptions import BridgeStoreError
from .probe import BridgeProber

RECENCY_WINDOW_DAYS = 7
RECENCY_POINTS_PER_DAY = 5.0

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BridgeMetadata:
    """Success/failure tallies for one bridge."""

    success_count: int = 0
    failure_count: int = 0
    last_tested: Optional[datetime] = None
    last_success: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of successful probes; 0.0 when never tested."""
        total = self.success_count + self.failure_count
        if total == 0:
            return 0.0
        return self.success_count * 100.0 / total

    def record_success(self, now: datetime) -> None:
        self.success_count += 1
        self.last_success = now
        self.last_tested = now

    def record_failure(self, now: datetime) -> None:
        self.failure_count += 1
        self.last_tested = now

    def recency_bonus(self, now: datetime) -> float:
        if self.last_success is None:
            return 0.0
        age_seconds = max((now - self.last_success).total_seconds(), 0.0)
        days_old = int(age_seconds // 86400)
        if days_old < RECENCY_WINDOW_DAYS:
            return (RECENCY_WINDOW_DAYS - days_old) * RECENCY_POINTS_PER_DAY
        return 0.0

    def score(self, now: datetime) -> float:
        return self.success_rate + self.recency_bonus(now)


class BridgeScoreboard:
    """Process-local metadata for every bridge that has been probed."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utc_now
        self._metadata: dict[str, BridgeMetadata] = {}

    def __len__(self) -> int:
        return len(self._metadata)

    def __contains__(self, key: str) -> bool:
        return key in self._metadata

    def get(self, key: str) -> Optional[BridgeMetadata]:
        return self._metadata.get(key)

    def record_success(self, key: str) -> BridgeMetadata:
        metadata = self._metadata.setdefault(key, BridgeMetadata())
        metadata.record_success(self._clock())
        return metadata

    def record_failure(self, key: str) -> BridgeMetadata:
        metadata = self._metadata.setdefault(key, BridgeMetadata())
        metadata.record_failure(self._clock())
        return metadata

    def score(self, key: str) -> float:
        """Score for a key; unknown bridges score 0."""
        metadata = self._metadata.get(key)
        if metadata is None:
            return 0.0
        return metadata.score(self._clock())

    def prioritized(self) -> list[tuple[str, float]]:
        """All known keys with their scores, highest first."""
        now = self._clock()
        scored = [(key, meta.score(now)) for key, meta in self._metadata.items()]
        return sorted(scored, key=lambda item: item[1], reverse=True)

    def order(self, bridges: list[Bridge]) -> list[Bridge]:
        """Sort bridges by score, highest first; equal scores keep their order."""
        now = self._clock()
        scores = {key: meta.score(now) for key, meta in self._metadata.items()}
        return sorted(bridges, key=lambda b: scores.get(b.key, 0.0), reverse=True)


class BridgeCollector:
    """
    Discovers, tests, caches and ranks bridges.

    Discovery failures never propagate: they are logged and yield no
    candidates, so a discovery outage cannot block fallback.
    """

    COMPONENT = "BridgeCollector"

    def __init__(
        self,
        store: BridgeStore,
        config: Optional[BridgeConfig] = None,
        discovery: Optional[DiscoveryClient] = None,
        prober: Optional[BridgeProber] = None,
        scoreboard: Optional[BridgeScoreboard] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            store: Persistent bridge list
            config: Discovery and probe settings
            discovery: Discovery client (built from config when omitted)
            prober: Reachability prober (built from config when omitted)
            scoreboard: Metadata mapping (a fresh one when omitted)
            logger: Optional audit logger
        """
        self._config = config or BridgeConfig()
        self._store = store
        self._discovery = discovery or DiscoveryClient(self._config)
        self._prober = prober or BridgeProber(self._config.probe_timeout_seconds, logger)
        self._scoreboard = scoreboard if scoreboard is not None else BridgeScoreboard()
        self._logger = logger
        self._cache: set[str] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False
        self._rounds = 0

    async def __aenter__(self) -> "BridgeCollector":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def scoreboard(self) -> BridgeScoreboard:
        return self._scoreboard

    @property
    def cached_keys(self) -> set[str]:
        """Keys this collector has persisted during its lifetime."""
        return set(self._cache)

    @property
    def rounds_completed(self) -> int:
        return self._rounds

    def is_running(self) -> bool:
        return self._running

    async def collect_bridges(self) -> list[Bridge]:
        """
        Fetch candidates from the discovery endpoint.

        Returns:
            Unique bridges in first-seen order; empty on any failure
        """
        self._log(LogLevel.INFO, "Collecting bridges from discovery endpoint")

        response = await self._discovery.fetch_bridges(self._config.transport)
        if response.error is not None:
            self._log(
                LogLevel.WARN,
                f"Failed to fetch bridges: {response.error.message}",
                {"code": response.error.code.value, "http_status_code": response.error.http_status_code},
            )
            return []

        for line in response.rejected_lines:
            self._log(LogLevel.DEBUG, "Failed to parse bridge line", {"line": line})

        for bridge in response.bridges:
            if not bridge.has_standard_fingerprint:
                self._log(
                    LogLevel.WARN,
                    "Non-standard fingerprint (expected 40 hex characters)",
                    {"bridge": bridge.key},
                )

        unique = dedupe_bridges(response.bridges)
        if unique:
            self._log(LogLevel.INFO, f"Collected {len(unique)} unique bridges")
        else:
            self._log(LogLevel.WARN, "No bridges collected from discovery endpoint")
        return unique

    async def test_and_cache_bridges(self, candidates: list[Bridge]) -> int:
        """
        Probe each candidate; persist the reachable ones.

        Every probe updates the scoreboard. Unreachable bridges are not
        persisted. A bridge already in the store is not an error.

        Returns:
            Number of bridges that were reachable and newly persisted
        """
        self._log(LogLevel.INFO, f"Testing {len(candidates)} collected bridges")
        added = 0

        for bridge in candidates:
            try:
                reachable = (await self._prober.probe(bridge, self._config.probe_timeout_seconds)).reachable
            except Exception as e:
                self._log(LogLevel.WARN, f"Error testing bridge {bridge.key}: {e}")
                reachable = False

            if not reachable:
                self._scoreboard.record_failure(bridge.key)
                self._log(LogLevel.DEBUG, f"Bridge {bridge.key} failed connectivity test")
                continue

            if self._persist(bridge):
                added += 1
            self._scoreboard.record_success(bridge.key)

        self._log(
            LogLevel.INFO,
            "Bridge testing complete",
            {"tested": len(candidates), "added": added},
        )
        return added

    async def cache_bridges(self, candidates: list[Bridge]) -> int:
        """
        Persist candidates without probing them.

        Returns:
            Number of bridges newly persisted
        """
        return sum(1 for bridge in candidates if self._persist(bridge))

    async def collect_and_test(self) -> int:
        """Collect candidates, then probe and persist the reachable ones."""
        return await self.test_and_cache_bridges(await self.collect_bridges())

    def get_prioritized_bridges(self) -> list[tuple[str, float]]:
        """Known bridge keys with their scores, sorted highest first."""
        return self._scoreboard.prioritized()

    async def auto_collect(
        self,
        interval_seconds: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
        test_bridges: bool = False,
    ) -> None:
        """
        Collect, cache and sleep, over and over.

        Errors in a round are logged and the loop carries on. The loop ends
        only when stop_event is set or stop() is called; a pending sleep
        wakes up immediately.

        Args:
            interval_seconds: Pause between rounds (configured interval by default)
            stop_event: Event that ends the loop
            test_bridges: Probe candidates and cache only reachable ones;
                by default every discovered bridge is cached untested
        """
        interval = (
            self._config.collection_interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        self._stop_event = stop_event or asyncio.Event()
        self._running = True

        try:
            while not self._stop_event.is_set():
                try:
                    candidates = await self.collect_bridges()
                    if test_bridges:
                        await self.test_and_cache_bridges(candidates)
                    else:
                        await self.cache_bridges(candidates)
                except Exception as e:
                    if self._logger:
                        self._logger.log_error(self.COMPONENT, "Bridge collection round failed", e)
                self._rounds += 1

                if await self._wait_for_stop(interval):
                    break
        finally:
            self._running = False

    def stop(self) -> None:
        """Signal auto_collect to finish."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def close(self) -> None:
        await self._discovery.close()

    async def _wait_for_stop(self, interval: float) -> bool:
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return False
        return True

    def _persist(self, bridge: Bridge) -> bool:
        if bridge.key in self._cache:
            return False

        try:
            self._store.add(bridge)
        except BridgeStoreError as e:
            if e.code == BridgeErrorCode.DUPLICATE.value:
                self._log(LogLevel.INFO, f"Bridge {bridge.key} already exists")
                self._cache.add(bridge.key)
            else:
                self._log(LogLevel.WARN, f"Failed to cache bridge {bridge.key}: {e.message}")
            return False

        self._cache.add(bridge.key)
        return True

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
