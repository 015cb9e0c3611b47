"""
Circuit inspection over a control session.

Circuit status is recomputed on every query; rows are reported exactly as the
daemon lists them, duplicates included.
"""

from dataclasses import dataclass
from typing import Optional

from .audit_logger import AuditLogger
from .control_session import ControlSession
from .enums import ControlErrorCode, LogLevel
from .exceptions import ControlCommandError
from .protocol import build_getinfo, build_signal, extract_data_section, get_value


@dataclass
class CircuitInfo:
    """One row of the daemon's circuit-status listing."""

    id: str
    status: str
    purpose: Optional[str] = None
    flags: Optional[str] = None


class CircuitInspector:
    """Reads circuit state and requests fresh circuits."""

    COMPONENT = "CircuitInspector"

    def __init__(self, logger: Optional[AuditLogger] = None) -> None:
        self._logger = logger

    async def get_circuits(self, session: ControlSession) -> list[CircuitInfo]:
        """
        List the daemon's circuits.

        An empty or unparseable listing yields an empty list; "no circuits"
        is a legitimate answer, not a fault.
        """
        response = await session.send_command(build_getinfo("circuit-status"))
        circuits = self.parse_circuit_status(response.raw)
        self._log(LogLevel.DEBUG, f"Decoded {len(circuits)} circuits")
        return circuits

    async def new_circuit(self, session: ControlSession) -> None:
        """
        Ask the daemon to switch to clean circuits (NEWNYM).

        Success only means the signal was accepted; it does not confirm that
        a new circuit has formed.

        Raises:
            ControlCommandError: If the daemon answers with an error status
        """
        self._log(LogLevel.INFO, "Requesting new circuit")
        response = await session.send_command(build_signal("NEWNYM"))

        if not response.is_success:
            raise ControlCommandError(
                code=ControlErrorCode.COMMAND_FAILED.value,
                message=f"NEWNYM signal rejected: {response.first_line}",
                details={"status_code": response.status_code},
            )
        self._log(LogLevel.INFO, "New circuit requested")

    async def is_circuit_established(self, session: ControlSession) -> bool:
        """True when the daemon reports at least one usable circuit."""
        response = await session.send_command(build_getinfo("status/circuit-established"))
        return get_value(response.raw, "status/circuit-established") == "1"

    @staticmethod
    def parse_circuit_row(row: str) -> Optional[CircuitInfo]:
        """
        Decode ``<id> <status> [<purpose> [<flags...>]]``.

        Returns None for rows with fewer than two tokens.
        """
        parts = row.split()
        if len(parts) < 2:
            return None

        return CircuitInfo(
            id=parts[0],
            status=parts[1],
            purpose=parts[2] if len(parts) > 2 else None,
            flags=" ".join(parts[3:]) if len(parts) > 3 else None,
        )

    @classmethod
    def parse_circuit_status(cls, text: str) -> list[CircuitInfo]:
        """
        Decode a circuit-status reply.

        Handles both the multi-line ``250+circuit-status=`` section and the
        single-line ``250-circuit-status=<row>`` form.
        """
        rows = extract_data_section(text, "circuit-status")
        if rows is None:
            value = get_value(text, "circuit-status")
            rows = [value] if value else []

        circuits = []
        for row in rows:
            if not row.strip():
                continue
            circuit = cls.parse_circuit_row(row)
            if circuit is not None:
                circuits.append(circuit)
        return circuits

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
