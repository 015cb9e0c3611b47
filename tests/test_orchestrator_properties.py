"""
Property-based tests for the Resilience Orchestrator.

Checks that configuration values reach the components and that the
configured loops start and stop together.
"""

import asyncio
import tempfile
from dataclasses import replace
from pathlib import Path

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tor_resilience.bridges import Bridge
from tor_resilience.config import BridgeConfig, ControlConfig, SystemConfig
from tor_resilience.control_session import ControlSession
from tor_resilience.discovery import DiscoveryClient
from tor_resilience.enums import FallbackPhase, ProbeOutcome
from tor_resilience.exceptions import ConfigError
from tor_resilience.orchestrator import ResilienceOrchestrator
from tor_resilience.probe import ProbeResult

from fake_daemon import OK, FakeTorDaemon, unused_port

MISSING_COOKIE = Path("/nonexistent/control.authcookie")


class ScriptedProber:
    """Prober stand-in: reachable keys answer, everything else times out."""

    def __init__(self, reachable: set[str] = frozenset()) -> None:
        self.reachable = set(reachable)
        self.probed: list[str] = []

    async def probe(self, bridge: Bridge, timeout: float = None) -> ProbeResult:
        self.probed.append(bridge.key)
        if bridge.key in self.reachable:
            return ProbeResult(bridge=bridge, outcome=ProbeOutcome.REACHABLE)
        return ProbeResult(bridge=bridge, outcome=ProbeOutcome.TIMEOUT, error="timed out")


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def discovery_returning(lines: list[str]) -> DiscoveryClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"bridges": lines})

    return DiscoveryClient(BridgeConfig(), transport=httpx.MockTransport(handler))


def system_config(tmpdir: str, port: int, **overrides) -> SystemConfig:
    config = SystemConfig(
        control=ControlConfig(port=port, timeout_seconds=2.0, cookie_path=MISSING_COOKIE),
        bridges=BridgeConfig(store_path=Path(tmpdir) / "bridges.conf"),
    )
    return replace(config, **overrides)


class TestConfigurationWiringProperty:
    """
    Property 36: Components use the configured bridge file and settings.
    """

    @given(name=st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=12))
    @settings(max_examples=20, deadline=None)
    def test_store_path_reaches_fallback(self, name: str) -> None:
        """
        *For any* configured bridge file, fallback SHALL draw its candidates
        from that file.
        """
        bridge = Bridge("192.0.2.30", 443)

        with tempfile.TemporaryDirectory() as tmpdir:
            config = system_config(tmpdir, unused_port())
            config.bridges.store_path = Path(tmpdir) / f"{name}.conf"
            orchestrator = ResilienceOrchestrator(
                config,
                prober=ScriptedProber({bridge.key}),
                discovery=discovery_returning([]),
            )
            orchestrator.store.add(bridge)

            assert orchestrator.store.file_path == config.bridges.store_path
            assert asyncio.run(orchestrator.engine.attempt_fallback()) is True
            assert orchestrator.engine.active_bridge == bridge
            asyncio.run(orchestrator.close())

    def test_scoreboard_is_shared(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            orchestrator = ResilienceOrchestrator(
                system_config(tmpdir, unused_port()),
                prober=ScriptedProber({"192.0.2.31:443"}),
                discovery=discovery_returning([]),
            )
            orchestrator.store.add(Bridge("192.0.2.31", 443))

            asyncio.run(orchestrator.engine.attempt_fallback())
            assert orchestrator.collector.scoreboard.get("192.0.2.31:443").success_count == 1
            asyncio.run(orchestrator.close())


class TestExitCountryStartupProperty:
    """
    Property 37: The configured exit country is applied once at start.
    """

    def test_exit_country_applied(self) -> None:
        async def run():
            replies = {"SETCONF ExitNodes={DE,NL}": OK}
            async with FakeTorDaemon(replies=replies) as daemon:
                with tempfile.TemporaryDirectory() as tmpdir:
                    config = system_config(tmpdir, daemon.port, exit_country="de, nl")
                    async with ResilienceOrchestrator(config, discovery=discovery_returning([])) as orchestrator:
                        codes = await orchestrator.apply_exit_country()
                return codes, daemon.commands

        codes, commands = asyncio.run(run())
        assert codes == ["DE", "NL"]
        assert commands[-1] == "SETCONF ExitNodes={DE,NL}"

    def test_no_exit_country_makes_no_connection(self) -> None:
        sessions = []

        def factory() -> ControlSession:
            sessions.append(object())
            raise AssertionError("no session expected")

        with tempfile.TemporaryDirectory() as tmpdir:
            orchestrator = ResilienceOrchestrator(
                system_config(tmpdir, unused_port()),
                session_factory=factory,
                discovery=discovery_returning([]),
            )
            assert asyncio.run(orchestrator.apply_exit_country()) is None
            asyncio.run(orchestrator.close())

        assert sessions == []

    def test_invalid_exit_country_stops_run(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = system_config(tmpdir, unused_port(), exit_country="XYZ")
            orchestrator = ResilienceOrchestrator(config, discovery=discovery_returning([]))

            async def run() -> None:
                async with orchestrator:
                    await asyncio.wait_for(orchestrator.run(), timeout=5.0)

            with pytest.raises(ConfigError):
                asyncio.run(run())

    def test_unreachable_daemon_does_not_stop_run(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = system_config(
                tmpdir,
                unused_port(),
                exit_country="SE",
                auto_fallback=False,
                auto_collect_bridges=False,
            )
            orchestrator = ResilienceOrchestrator(config, discovery=discovery_returning([]))

            async def run() -> None:
                stop_event = asyncio.Event()
                task = asyncio.create_task(orchestrator.run(stop_event))
                await asyncio.sleep(0.05)
                stop_event.set()
                await asyncio.wait_for(task, timeout=2.0)
                await orchestrator.close()

            asyncio.run(run())


class TestSupervisedLoopsProperty:
    """
    Property 38: The configured loops run until the orchestrator stops.
    """

    def test_both_loops_run_and_stop(self) -> None:
        lines = ["192.0.2.40:443", "192.0.2.41:443"]
        sleep = SleepRecorder()

        with tempfile.TemporaryDirectory() as tmpdir:
            orchestrator = ResilienceOrchestrator(
                system_config(tmpdir, unused_port()),
                prober=ScriptedProber(),
                discovery=discovery_returning(lines),
                sleep=sleep,
            )

            async def run() -> None:
                task = asyncio.create_task(orchestrator.run())
                while not (
                    orchestrator.collector.rounds_completed >= 1
                    and orchestrator.engine.state.retry_count == 4
                ):
                    await asyncio.sleep(0.01)
                orchestrator.stop()
                await asyncio.wait_for(task, timeout=5.0)
                await orchestrator.close()

            asyncio.run(asyncio.wait_for(run(), timeout=10.0))

            assert [b.key for b in orchestrator.store.list()] == lines

        assert orchestrator.engine.phase == FallbackPhase.EXHAUSTED
        assert sleep.delays[:3] == [1.0, 2.0, 4.0]
        assert not orchestrator.collector.is_running()

    def test_disabled_loops_do_not_start(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = system_config(tmpdir, unused_port(), auto_fallback=False, auto_collect_bridges=False)
            prober = ScriptedProber()
            orchestrator = ResilienceOrchestrator(config, prober=prober, discovery=discovery_returning(["192.0.2.50:443"]))

            async def run() -> None:
                stop_event = asyncio.Event()
                task = asyncio.create_task(orchestrator.run(stop_event))
                await asyncio.sleep(0.05)
                stop_event.set()
                await asyncio.wait_for(task, timeout=2.0)
                await orchestrator.close()

            asyncio.run(run())

            assert orchestrator.store.list() == []
            assert orchestrator.collector.rounds_completed == 0
            assert orchestrator.engine.state.last_attempt is None
            assert prober.probed == []
