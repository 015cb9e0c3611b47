"""
Raw TCP reachability probe.

A bridge counts as reachable when a plain TCP connection to its
address:port completes within the timeout. Nothing is sent over the socket.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from .audit_logger import AuditLogger
from .bridges import Bridge
from .enums import LogLevel, ProbeOutcome
from .exceptions import BridgeUnreachableError


@dataclass
class ProbeResult:
    """Outcome of one probe."""

    bridge: Bridge
    outcome: ProbeOutcome
    latency_ms: float = 0.0
    error: Optional[str] = None

    @property
    def reachable(self) -> bool:
        return self.outcome == ProbeOutcome.REACHABLE

    def raise_for_unreachable(self) -> None:
        """
        Raise if the bridge was not reachable.

        Raises:
            BridgeUnreachableError: With the probe outcome as its code
        """
        if not self.reachable:
            raise BridgeUnreachableError(
                code=self.outcome.value,
                message=f"Bridge {self.bridge.key} is not reachable: {self.error or self.outcome.value}",
                details={"bridge": self.bridge.key},
            )


class BridgeProber:
    """Tests bridge reachability with a TCP connect."""

    COMPONENT = "BridgeProber"

    def __init__(
        self,
        timeout: float = 5.0,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            timeout: Default connect timeout in seconds
            logger: Optional audit logger
        """
        self._timeout = timeout
        self._logger = logger

    @property
    def timeout(self) -> float:
        return self._timeout

    async def probe(self, bridge: Bridge, timeout: Optional[float] = None) -> ProbeResult:
        """
        Try a TCP connect to the bridge.

        Never raises for network failures; they are reported in the result.
        """
        timeout = self._timeout if timeout is None else timeout
        host = bridge.address.strip("[]")
        start_time = time.perf_counter()

        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, bridge.port),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self._log(LogLevel.WARN, f"Bridge {bridge.key} connection timeout ({timeout}s)")
            return ProbeResult(
                bridge=bridge,
                outcome=ProbeOutcome.TIMEOUT,
                latency_ms=self._elapsed_ms(start_time),
                error=f"timed out after {timeout}s",
            )
        except ConnectionRefusedError as e:
            self._log(LogLevel.WARN, f"Bridge {bridge.key} is not reachable: {e}")
            return ProbeResult(
                bridge=bridge,
                outcome=ProbeOutcome.REFUSED,
                latency_ms=self._elapsed_ms(start_time),
                error=str(e),
            )
        except OSError as e:
            self._log(LogLevel.WARN, f"Bridge {bridge.key} is not reachable: {e}")
            return ProbeResult(
                bridge=bridge,
                outcome=ProbeOutcome.ERROR,
                latency_ms=self._elapsed_ms(start_time),
                error=str(e),
            )

        latency_ms = self._elapsed_ms(start_time)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

        self._log(LogLevel.INFO, f"Bridge {bridge.key} is reachable", {"latency_ms": round(latency_ms, 1)})
        return ProbeResult(
            bridge=bridge,
            outcome=ProbeOutcome.REACHABLE,
            latency_ms=latency_ms,
        )

    async def is_reachable(self, bridge: Bridge, timeout: Optional[float] = None) -> bool:
        result = await self.probe(bridge, timeout)
        return result.reachable

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
