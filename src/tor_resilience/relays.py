"""
Relay inspection over a control session.

Relay details come from the daemon's router-status entries
(``GETINFO ns/id/<fingerprint>``):

    r <nickname> <identity> <digest> <date> <time> <IPv4> <ORPort> <DirPort>
    a <[IPv6]:port>
    s <flag> <flag> ...

Nothing is cached between calls.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .audit_logger import AuditLogger
from .control_session import ControlSession
from .enums import LogLevel
from .exceptions import ConfigError, ControlCommandError
from .protocol import build_getinfo, extract_data_section, get_value

FINGERPRINT_PATTERN = re.compile(r"^[0-9A-F]{40}$")

# A 40-hex token right after an EXTENDED marker. This is a substring
# heuristic: malformed daemon output can match it by accident.
_EXTENDED_PATTERN = re.compile(r"EXTENDED ([0-9A-Fa-f]{40})(?=\s|$)")


@dataclass
class RelayInfo:
    """A relay as described by the daemon."""

    fingerprint: str
    nickname: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    is_exit: bool = False
    is_guard: bool = False


def normalize_fingerprint(fingerprint: str) -> str:
    """
    Strip a leading ``$`` and upper-case a relay fingerprint.

    Raises:
        ConfigError: If the result is not 40 hex characters
    """
    candidate = fingerprint.strip().lstrip("$").upper()
    if not FINGERPRINT_PATTERN.match(candidate):
        raise ConfigError(
            code="invalid_fingerprint",
            message=f"Invalid relay fingerprint: {fingerprint!r}. Expected 40 hex characters",
            details={"fingerprint": fingerprint},
        )
    return candidate


class RelayInspector:
    """Looks up relay descriptors and the current exit relay."""

    COMPONENT = "RelayInspector"

    def __init__(self, logger: Optional[AuditLogger] = None) -> None:
        self._logger = logger

    async def get_relay_info(
        self,
        session: ControlSession,
        fingerprint: str,
        resolve_country: bool = False,
    ) -> RelayInfo:
        """
        Fetch the daemon's view of one relay.

        Args:
            session: Authenticated control session
            fingerprint: Relay fingerprint (40 hex characters, ``$`` allowed)
            resolve_country: Also look up the relay address's country code

        Raises:
            ConfigError: If the fingerprint is malformed
            ControlCommandError: If the daemon does not know the relay
        """
        fingerprint = normalize_fingerprint(fingerprint)
        key = f"ns/id/{fingerprint}"
        response = await session.send_command(build_getinfo(key))

        if not response.is_success:
            raise ControlCommandError(
                code="unknown_relay",
                message=f"Relay lookup failed: {response.first_line}",
                details={"fingerprint": fingerprint, "status_code": response.status_code},
            )

        relay = self.parse_relay_info(response.raw, fingerprint)

        if resolve_country and relay.address:
            relay.country = await self._lookup_country(session, relay.address)

        return relay

    async def get_exit_relay(self, session: ControlSession) -> Optional[RelayInfo]:
        """
        Find the exit relay from circuit state.

        Returns None while circuits are still forming or when the listing
        carries no EXTENDED fingerprint; that is an expected outcome.
        """
        response = await session.send_command(build_getinfo("circuit-status"))
        fingerprint = self.find_extended_fingerprint(response.raw)

        if fingerprint is None:
            self._log(LogLevel.DEBUG, "Exit relay details not available yet")
            return None

        return await self.get_relay_info(session, fingerprint)

    @staticmethod
    def find_extended_fingerprint(text: str) -> Optional[str]:
        """Return the first 40-hex token following ``EXTENDED`` in a circuit-status reply."""
        start = text.find("circuit-status=")
        if start < 0:
            return None

        match = _EXTENDED_PATTERN.search(text, start)
        return match.group(1).upper() if match else None

    @staticmethod
    def parse_relay_info(text: str, fingerprint: str) -> RelayInfo:
        """Decode nickname, address and flags from a router-status entry."""
        relay = RelayInfo(fingerprint=fingerprint)

        lines = extract_data_section(text, f"ns/id/{fingerprint}")
        if lines is None:
            lines = text.splitlines()

        for raw_line in lines:
            parts = raw_line.strip().split()
            if not parts:
                continue

            if parts[0] == "r":
                if len(parts) > 1:
                    relay.nickname = parts[1]
                if len(parts) > 6:
                    relay.address = parts[6]
            elif parts[0] == "a" and len(parts) > 1 and relay.address is None:
                relay.address = parts[1]
            elif parts[0] == "s":
                flags = set(parts[1:])
                relay.is_exit = "Exit" in flags
                relay.is_guard = "Guard" in flags

        return relay

    async def _lookup_country(self, session: ControlSession, address: str) -> Optional[str]:
        # a-line addresses look like [2001:db8::1]:9001
        ip = address
        if ip.startswith("["):
            ip = ip[1:].split("]", 1)[0]

        key = f"ip-to-country/{ip}"
        response = await session.send_command(build_getinfo(key))
        if not response.is_success:
            self._log(LogLevel.DEBUG, "Country lookup failed", {"address": ip})
            return None

        code = (get_value(response.raw, key) or "").strip()
        if len(code) != 2 or not code.isalpha():
            return None
        return code.upper()

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
