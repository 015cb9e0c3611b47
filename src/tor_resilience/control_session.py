"""
Control port session.

A ControlSession owns one TCP connection to the daemon's control port. It
authenticates once per connection and exchanges one command at a time: the
protocol carries no request identifiers, so replies can only be matched to
requests by strict ordering. Each exchange holds an asyncio.Lock for its
whole write/read cycle.

A session that hits an unrecoverable I/O error, a read timeout, an
oversized reply or a 515 reply closes itself and cannot be reused; build a new one to retry.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from .audit_logger import AuditLogger
from .config import ControlConfig
from .enums import ControlErrorCode, LogLevel
from .exceptions import (
    AuthenticationError,
    ControlConnectionError,
    OperationTimeoutError,
    ProtocolParseError,
    TorResilienceError,
)
from .protocol import (
    CRLF,
    Response,
    build_authenticate,
    build_getinfo,
    parse_response,
    reply_complete,
)

READ_CHUNK_BYTES = 4096


@dataclass
class DaemonStatus:
    """Connection and circuit state reported by the daemon."""

    is_connected: bool
    circuit_established: bool
    circuit_status: Optional[str] = None

    def __str__(self) -> str:
        return (
            f"Connected: {self.is_connected}, "
            f"Circuit Established: {self.circuit_established}"
        )


class ControlSession:
    """
    Async client for the daemon's control port.

    Usage:
        async with ControlSession(config) as session:
            response = await session.send_command("GETINFO version")
    """

    COMPONENT = "ControlSession"

    def __init__(
        self,
        config: Optional[ControlConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize an unconnected session.

        Args:
            config: Control port settings (host, port, timeout, cookie path)
            logger: Optional audit logger
        """
        self._config = config or ControlConfig()
        self._logger = logger
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._authenticated = False
        self._dropped = False
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "ControlSession":
        await self.connect()
        try:
            await self.authenticate()
        except TorResilienceError:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def port(self) -> int:
        return self._config.port

    @property
    def host(self) -> str:
        return self._config.host

    @property
    def is_connected(self) -> bool:
        return self._writer is not None

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    async def connect(self) -> None:
        """
        Open the TCP connection to the control port.

        Raises:
            ControlConnectionError: On refusal, OS error or timeout, or if
                this session was already dropped
        """
        if self._dropped:
            raise ControlConnectionError(
                code=ControlErrorCode.NOT_CONNECTED.value,
                message="Session was closed after a failure; create a new session",
            )
        if self.is_connected:
            return

        address = f"{self.host}:{self.port}"
        self._log(LogLevel.INFO, f"Connecting to control port at {address}")

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._log(LogLevel.ERROR, "Connection timeout to control port", {"address": address})
            raise ControlConnectionError(
                code=ControlErrorCode.TIMEOUT.value,
                message=f"Connection to {address} timed out after {self._config.timeout_seconds}s. Is Tor running?",
                details={"address": address},
            )
        except OSError as e:
            self._log(LogLevel.ERROR, f"Failed to connect to control port: {e}", {"address": address})
            raise ControlConnectionError(
                code=ControlErrorCode.CONNECTION_REFUSED.value,
                message=f"Failed to connect to control port {address}: {e}. Is Tor running?",
                details={"address": address},
            )

        self._reader = reader
        self._writer = writer
        self._log(LogLevel.INFO, "Connected to control port", {"address": address})

    async def authenticate(self) -> None:
        """
        Authenticate, trying cookie authentication before null authentication.

        Raises:
            ControlConnectionError: If connect() has not succeeded
            AuthenticationError: If both methods are rejected
        """
        self._require_connected()
        self._log(LogLevel.INFO, "Authenticating with control port")

        cookie_hex = self._read_cookie()
        if cookie_hex is not None:
            try:
                response = await self._exchange(build_authenticate(cookie_hex))
                if response.is_success:
                    self._authenticated = True
                    self._log(LogLevel.INFO, "Authenticated with cookie")
                    return
                self._log(
                    LogLevel.WARN,
                    "Cookie authentication rejected",
                    {"status_code": response.status_code},
                )
            except (ControlConnectionError, OperationTimeoutError, ProtocolParseError) as e:
                self._log(LogLevel.WARN, f"Cookie authentication failed: {e}")

        if not self.is_connected:
            raise AuthenticationError(
                code=ControlErrorCode.AUTH_REJECTED.value,
                message="Authentication failed: daemon closed the connection. Please check Tor configuration.",
            )

        self._log(LogLevel.DEBUG, "Trying null authentication")
        try:
            response = await self._exchange(build_authenticate())
        except TorResilienceError as e:
            raise AuthenticationError(
                code=ControlErrorCode.AUTH_REJECTED.value,
                message=f"Authentication failed: {e.message}. Please check Tor configuration.",
            )

        if not response.is_success:
            self._log(
                LogLevel.ERROR,
                "Null authentication rejected",
                {"status_code": response.status_code},
            )
            raise AuthenticationError(
                code=ControlErrorCode.AUTH_REJECTED.value,
                message="Authentication failed. Please check Tor configuration.",
                details={"status_code": response.status_code},
            )

        self._authenticated = True
        self._log(LogLevel.INFO, "Authenticated successfully")

    async def send_command(self, command: str) -> Response:
        """
        Send one command and return the parsed reply.

        Args:
            command: Command line; CRLF is appended when missing

        Returns:
            The parsed Response (its ``raw`` attribute holds the decoded text)

        Raises:
            ControlConnectionError: If not connected or the socket fails
            AuthenticationError: If not authenticated, or the daemon answers 515
            OperationTimeoutError: If no complete reply arrives in time
            ProtocolParseError: If the reply has no status code
        """
        self._require_connected()
        if not self._authenticated:
            raise AuthenticationError(
                code=ControlErrorCode.NOT_AUTHENTICATED.value,
                message="Commands require authentication first",
            )

        if not command.endswith(CRLF):
            command = command.rstrip("\r\n") + CRLF

        response = await self._exchange(command)

        if response.is_auth_required:
            self._log(LogLevel.ERROR, "Daemon requires authentication; dropping session")
            await self._drop()
            raise AuthenticationError(
                code=ControlErrorCode.AUTH_REQUIRED.value,
                message="Authentication required",
                details={"reply": response.first_line},
            )

        return response

    async def get_status(self) -> DaemonStatus:
        """Query whether a circuit is established, plus the raw circuit status."""
        established = await self.send_command(build_getinfo("status/circuit-established"))
        circuits = await self.send_command(build_getinfo("circuit-status"))

        return DaemonStatus(
            is_connected=True,
            circuit_established=established.get_value("status/circuit-established") == "1",
            circuit_status=circuits.raw,
        )

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        writer = self._writer
        self._reader = None
        self._writer = None
        self._authenticated = False

        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def _drop(self) -> None:
        self._dropped = True
        await self.close()

    async def _exchange(self, command: str) -> Response:
        """Write one command and read its whole reply under the session lock."""
        async with self._lock:
            if self._writer is None or self._reader is None:
                raise ControlConnectionError(
                    code=ControlErrorCode.NOT_CONNECTED.value,
                    message="Not connected to control port",
                )

            verb = command.split(" ", 1)[0].strip()
            self._log(LogLevel.DEBUG, f"Sending command: {verb}")

            try:
                self._writer.write(command.encode("utf-8"))
                await self._writer.drain()
                text = await asyncio.wait_for(
                    self._read_reply(),
                    timeout=self._config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                await self._drop()
                raise OperationTimeoutError(
                    code=ControlErrorCode.TIMEOUT.value,
                    message=f"Read timeout after {self._config.timeout_seconds}s",
                    details={"command": verb},
                )
            except (ControlConnectionError, ProtocolParseError):
                await self._drop()
                raise
            except OSError as e:
                await self._drop()
                raise ControlConnectionError(
                    code=ControlErrorCode.IO_ERROR.value,
                    message=f"Control connection failed: {e}",
                    details={"command": verb},
                )

        self._log(LogLevel.DEBUG, "Received reply", {"first_line": text.split("\n", 1)[0].strip()})
        return parse_response(text)

    async def _read_reply(self) -> str:
        assert self._reader is not None
        buffer = bytearray()

        while True:
            chunk = await self._reader.read(READ_CHUNK_BYTES)
            if not chunk:
                if buffer:
                    break
                raise ControlConnectionError(
                    code=ControlErrorCode.IO_ERROR.value,
                    message="Control connection closed by daemon",
                )
            buffer.extend(chunk)
            if reply_complete(buffer.decode("utf-8", errors="replace")):
                break
            if len(buffer) >= self._config.max_reply_bytes:
                # The unread tail would be taken for the next reply.
                raise ProtocolParseError(
                    code=ControlErrorCode.REPLY_TOO_LARGE.value,
                    message=f"Reply exceeded {self._config.max_reply_bytes} bytes",
                    details={"max_reply_bytes": self._config.max_reply_bytes},
                )

        return buffer.decode("utf-8", errors="replace")

    def _read_cookie(self) -> Optional[str]:
        path = self._config.cookie_path
        try:
            cookie = path.read_bytes()
        except OSError as e:
            self._log(LogLevel.DEBUG, f"Auth cookie not readable: {e}", {"path": str(path)})
            return None

        if not cookie:
            return None
        self._log(LogLevel.DEBUG, "Using cookie authentication")
        return cookie.hex()

    def _require_connected(self) -> None:
        if not self.is_connected:
            raise ControlConnectionError(
                code=ControlErrorCode.NOT_CONNECTED.value,
                message="Not connected to control port",
            )

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
