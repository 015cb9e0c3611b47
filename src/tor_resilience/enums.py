"""
Enumeration types for the tor_resilience package.

These enums provide type-safe constants for log levels, error codes,
probe outcomes and fallback phases throughout the system.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def rank(self) -> int:
        """Numeric severity used for threshold filtering."""
        return _LEVEL_RANKS[self]


_LEVEL_RANKS = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}


class ControlErrorCode(Enum):
    """Error codes for control-port session failures."""

    CONNECTION_REFUSED = "connection_refused"
    TIMEOUT = "timeout"
    NOT_CONNECTED = "not_connected"
    NOT_AUTHENTICATED = "not_authenticated"
    AUTH_REJECTED = "auth_rejected"
    AUTH_REQUIRED = "auth_required"
    IO_ERROR = "io_error"
    PARSE_ERROR = "parse_error"
    REPLY_TOO_LARGE = "reply_too_large"
    COMMAND_FAILED = "command_failed"


class BridgeErrorCode(Enum):
    """Error codes for bridge parsing and bridge store operations."""

    INVALID_FORMAT = "invalid_format"
    INVALID_PORT = "invalid_port"
    EMPTY_ADDRESS = "empty_address"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    IO_ERROR = "io_error"


class DiscoveryErrorCode(Enum):
    """Error codes for bridge discovery requests."""

    NETWORK_ERROR = "network_error"
    TLS_ERROR = "tls_error"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"


class ProbeOutcome(Enum):
    """Result of a raw TCP reachability probe."""

    REACHABLE = "reachable"
    REFUSED = "refused"
    TIMEOUT = "timeout"
    ERROR = "error"


class FallbackPhase(Enum):
    """Phases of the fallback state machine."""

    CHECKING = "checking"
    ACTIVE = "active"
    DEGRADED = "degraded"
    TESTING_BRIDGES = "testing_bridges"
    FALLBACK_ACTIVE = "fallback_active"
    EXHAUSTED = "exhausted"
    RETRYING = "retrying"
