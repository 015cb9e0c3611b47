"""
Exception classes for the tor_resilience package.

All exceptions inherit from TorResilienceError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class TorResilienceError(Exception):
    """Base exception for all tor_resilience errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ControlConnectionError(TorResilienceError):
    """Raised when the control port cannot be reached or the socket fails."""

    pass


class AuthenticationError(TorResilienceError):
    """Raised when the daemon rejects authentication or demands it (515)."""

    pass


class ProtocolParseError(TorResilienceError):
    """Raised when a reply does not start with a parseable status code."""

    pass


class ControlCommandError(TorResilienceError):
    """Raised when the daemon answers a command with an error status."""

    pass


class ConfigError(TorResilienceError):
    """Raised for invalid country codes, bridge lines, or settings."""

    pass


class BridgeUnreachableError(TorResilienceError):
    """Raised when a bridge probe fails and the caller asked for an exception."""

    pass


class OperationTimeoutError(TorResilienceError):
    """Raised when an operation's deadline elapses."""

    pass


class BridgeStoreError(TorResilienceError):
    """Raised when the bridge list file cannot be read, written, or edited."""

    pass


class DiscoveryError(TorResilienceError):
    """Raised when the bridge discovery endpoint is misconfigured."""

    pass
