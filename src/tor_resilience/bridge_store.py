"""
Bridge Store module for the persisted bridge list.

The list lives in a line-oriented text file: one canonical ``Bridge ...``
line per bridge, with blank lines and ``#`` comments ignored. Every edit
rewrites the whole file through a temporary file and an atomic rename, so
concurrent writers never leave a half-written list; the last writer wins.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional

from .audit_logger import AuditLogger
from .bridges import Bridge
from .enums import BridgeErrorCode, LogLevel
from .exceptions import BridgeStoreError, ConfigError

HEADER = "# tor-resilience bridge configuration"


class BridgeStore:
    """
    File-backed list of bridges.

    Bridges are unique by ``address:port``. Lines that fail to parse are
    skipped on read and dropped on the next rewrite.
    """

    COMPONENT = "BridgeStore"

    def __init__(self, file_path: Path, logger: Optional[AuditLogger] = None) -> None:
        """
        Initialize the bridge store.

        Args:
            file_path: Path to the bridge list file
            logger: Optional audit logger
        """
        self._file_path = Path(file_path)
        self._logger = logger

    @property
    def file_path(self) -> Path:
        return self._file_path

    def list(self) -> list[Bridge]:
        """
        Read every bridge in file order.

        Returns:
            The bridges; an empty list when the file does not exist

        Raises:
            BridgeStoreError: If the file exists but cannot be read
        """
        if not self._file_path.exists():
            return []

        content = self._read_text(self._file_path, "bridge config")

        bridges = []
        for line_number, raw_line in enumerate(content.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                bridges.append(Bridge.parse(line))
            except ConfigError as e:
                self._log(
                    LogLevel.WARN,
                    f"Skipping unparseable bridge line: {e.message}",
                    {"line_number": line_number},
                )
        return bridges

    def read_from_tor_config(self, torrc_path: Path) -> list[Bridge]:
        """
        Read the ``Bridge`` lines of a daemon configuration file.

        Other directives and lines that fail to parse are ignored. The store
        itself is not modified.

        Returns:
            The bridges in file order; an empty list when the file is missing

        Raises:
            BridgeStoreError: If the file exists but cannot be read
        """
        torrc_path = Path(torrc_path)
        if not torrc_path.exists():
            self._log(LogLevel.WARN, "Tor config file not found", {"file_path": str(torrc_path)})
            return []

        content = self._read_text(torrc_path, "Tor config file")

        bridges = []
        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line.upper().startswith("BRIDGE "):
                continue
            try:
                bridges.append(Bridge.parse(line))
            except ConfigError:
                continue

        self._log(LogLevel.INFO, f"Read {len(bridges)} bridges from Tor config file")
        return bridges

    def contains(self, address: str, port: int) -> bool:
        return any(b.address == address and b.port == port for b in self.list())

    def add(self, bridge: Bridge) -> None:
        """
        Append a bridge.

        Raises:
            BridgeStoreError: With code ``duplicate`` if address:port is
                already present, or ``io_error`` if the file cannot be written
        """
        self._log(LogLevel.INFO, f"Adding bridge: {bridge.key}")

        if not bridge.has_standard_fingerprint:
            self._log(
                LogLevel.WARN,
                "Non-standard fingerprint (expected 40 hex characters)",
                {"bridge": bridge.key, "fingerprint_length": len(bridge.fingerprint or "")},
            )

        bridges = self.list()
        if any(b.key == bridge.key for b in bridges):
            raise BridgeStoreError(
                code=BridgeErrorCode.DUPLICATE.value,
                message=f"Bridge {bridge.key} already exists",
                details={"bridge": bridge.key},
            )

        bridges.append(bridge)
        self._save(bridges)

    def remove(self, address: str, port: int) -> None:
        """
        Remove the bridge at address:port.

        Raises:
            BridgeStoreError: With code ``not_found`` if no such bridge exists
        """
        bridges = self.list()
        remaining = [b for b in bridges if not (b.address == address and b.port == port)]

        if len(remaining) == len(bridges):
            raise BridgeStoreError(
                code=BridgeErrorCode.NOT_FOUND.value,
                message="Bridge not found",
                details={"bridge": f"{address}:{port}"},
            )

        self._save(remaining)
        self._log(LogLevel.INFO, f"Bridge removed: {address}:{port}")

    def replace(self, old: Bridge, new: Bridge) -> None:
        """
        Swap one stored bridge for another in place in the file order.

        Raises:
            BridgeStoreError: ``not_found`` if old is missing, ``duplicate``
                if new collides with a different stored bridge
        """
        bridges = self.list()
        keys = [b.key for b in bridges]

        if old.key not in keys:
            raise BridgeStoreError(
                code=BridgeErrorCode.NOT_FOUND.value,
                message="Bridge not found",
                details={"bridge": old.key},
            )
        if new.key != old.key and new.key in keys:
            raise BridgeStoreError(
                code=BridgeErrorCode.DUPLICATE.value,
                message=f"Bridge {new.key} already exists",
                details={"bridge": new.key},
            )

        bridges[keys.index(old.key)] = new
        self._save(bridges)

    def to_config_lines(self) -> list[str]:
        """Canonical lines suitable for the daemon's configuration."""
        return [bridge.to_config_line() for bridge in self.list()]

    def _save(self, bridges: list[Bridge]) -> None:
        lines = [HEADER] + [bridge.to_config_line() for bridge in bridges]
        content = "\n".join(lines) + "\n"

        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".bridges-",
                dir=str(self._file_path.parent),
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_name, self._file_path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise BridgeStoreError(
                code=BridgeErrorCode.IO_ERROR.value,
                message=f"Failed to write bridge config: {e}",
                details={"file_path": str(self._file_path)},
            )

    @staticmethod
    def _read_text(path: Path, description: str) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise BridgeStoreError(
                code=BridgeErrorCode.IO_ERROR.value,
                message=f"Failed to read {description}: {e}",
                details={"file_path": str(path)},
            )

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
