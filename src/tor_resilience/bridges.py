"""
Bridge entity and its textual form.

Canonical form, as written to the bridge file and the daemon's config:

    Bridge <address>:<port>[ <fingerprint>][ <transport>]

Parsing also accepts the form without the leading ``Bridge`` keyword.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .enums import BridgeErrorCode
from .exceptions import ConfigError

STANDARD_FINGERPRINT = re.compile(r"^[0-9A-Fa-f]{40}$")

_BRIDGE_KEYWORD = "BRIDGE "


@dataclass(frozen=True)
class Bridge:
    """
    An alternate entry relay.

    Instances are immutable; use dataclasses.replace() to edit one. The
    address is only checked for non-emptiness, not resolved or validated as
    an IP address.
    """

    address: str
    port: int
    fingerprint: Optional[str] = None
    transport: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.address or any(c.isspace() for c in self.address):
            raise ConfigError(
                code=BridgeErrorCode.EMPTY_ADDRESS.value,
                message="Bridge address cannot be empty",
                details={"address": self.address},
            )
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 1 <= self.port <= 65535:
            raise ConfigError(
                code=BridgeErrorCode.INVALID_PORT.value,
                message=f"Invalid port number: {self.port}. Must be between 1 and 65535",
                details={"port": self.port},
            )
        for name in ("fingerprint", "transport"):
            value = getattr(self, name)
            if value is not None and (not value or any(c.isspace() for c in value)):
                raise ConfigError(
                    code=BridgeErrorCode.INVALID_FORMAT.value,
                    message=f"Bridge {name} must be a single non-empty token",
                    details={name: value},
                )
        # The line format is positional: a transport alone would read back
        # as the fingerprint.
        if self.transport is not None and self.fingerprint is None:
            raise ConfigError(
                code=BridgeErrorCode.INVALID_FORMAT.value,
                message="Bridge transport requires a fingerprint",
                details={"transport": self.transport},
            )

    @property
    def key(self) -> str:
        """Composite identity used for deduplication and scoring."""
        return f"{self.address}:{self.port}"

    @property
    def has_standard_fingerprint(self) -> bool:
        """True when there is no fingerprint or it is 40 hex characters."""
        return self.fingerprint is None or bool(STANDARD_FINGERPRINT.match(self.fingerprint))

    @classmethod
    def parse(cls, text: str) -> "Bridge":
        """
        Parse ``[Bridge ]<address>:<port>[ <fingerprint>][ <transport>]``.

        Bracketed IPv6 literals (``[2001:db8::1]:443``) are accepted.

        Raises:
            ConfigError: If the text is empty, lacks ``address:port``, or the
                port is not in 1..65535
        """
        line = text.strip()
        if line.upper().startswith(_BRIDGE_KEYWORD):
            line = line[len(_BRIDGE_KEYWORD):].strip()

        parts = line.split()
        if not parts:
            raise ConfigError(
                code=BridgeErrorCode.INVALID_FORMAT.value,
                message="Empty bridge string",
                details={"input": text},
            )

        address, port_text = cls._split_address(parts[0], text)

        if not (port_text.isascii() and port_text.isdigit()):
            raise ConfigError(
                code=BridgeErrorCode.INVALID_PORT.value,
                message="Invalid port number. Must be between 1 and 65535",
                details={"input": text},
            )

        return cls(
            address=address,
            port=int(port_text),
            fingerprint=parts[1] if len(parts) > 1 else None,
            transport=parts[2] if len(parts) > 2 else None,
        )

    @staticmethod
    def _split_address(token: str, original: str) -> tuple[str, str]:
        if token.startswith("["):
            host, sep, port_text = token.rpartition("]:")
            if not sep or not host[1:]:
                raise ConfigError(
                    code=BridgeErrorCode.INVALID_FORMAT.value,
                    message="Invalid bridge format. Expected [IPv6]:PORT",
                    details={"input": original},
                )
            return host + "]", port_text

        pieces = token.split(":")
        if len(pieces) != 2:
            raise ConfigError(
                code=BridgeErrorCode.INVALID_FORMAT.value,
                message="Invalid bridge format. Expected IP:PORT (e.g., 1.2.3.4:443)",
                details={"input": original},
            )
        if not pieces[0]:
            raise ConfigError(
                code=BridgeErrorCode.EMPTY_ADDRESS.value,
                message="Bridge address cannot be empty",
                details={"input": original},
            )
        return pieces[0], pieces[1]

    def to_config_line(self) -> str:
        """Render the canonical ``Bridge ...`` line."""
        line = f"Bridge {self.address}:{self.port}"
        if self.fingerprint:
            line += f" {self.fingerprint}"
        if self.transport:
            line += f" {self.transport}"
        return line

    def __str__(self) -> str:
        return self.to_config_line()


def dedupe_bridges(bridges: list[Bridge]) -> list[Bridge]:
    """Drop later bridges whose address:port was already seen."""
    seen: set[str] = set()
    unique = []
    for bridge in bridges:
        if bridge.key in seen:
            continue
        seen.add(bridge.key)
        unique.append(bridge)
    return unique
