"""
Exit-node country restriction.

Country codes are ISO 3166-1 alpha-2 (two ASCII letters). The daemon takes
them as a brace-wrapped list: ``ExitNodes={US}`` or ``ExitNodes={US,CA}``.
"""

from typing import Optional, Union

from .audit_logger import AuditLogger
from .control_session import ControlSession
from .enums import ControlErrorCode, LogLevel
from .exceptions import ConfigError, ControlCommandError
from .protocol import build_getconf, build_setconf, get_value


class ExitCountrySelector:
    """Validates country codes and applies exit-node restrictions."""

    COMPONENT = "ExitCountrySelector"

    def __init__(self, logger: Optional[AuditLogger] = None) -> None:
        self._logger = logger

    @staticmethod
    def validate_country_code(country_code: str) -> str:
        """
        Validate one country code and return it upper-cased.

        Raises:
            ConfigError: If the code is not exactly two ASCII letters
        """
        if len(country_code) != 2:
            raise ConfigError(
                code="invalid_country_code",
                message=(
                    f"Invalid country code: '{country_code}'. Must be exactly 2 letters "
                    "(ISO 3166-1 alpha-2 format, e.g., CA, US, DE)"
                ),
                details={"token": country_code},
            )

        if not all(c.isascii() and c.isalpha() for c in country_code):
            raise ConfigError(
                code="invalid_country_code",
                message=f"Invalid country code: '{country_code}'. Must contain only letters",
                details={"token": country_code},
            )

        return country_code.upper()

    @classmethod
    def validate_country_codes(cls, country_codes: str) -> list[str]:
        """
        Validate a comma-separated list of codes.

        Empty segments are skipped.

        Raises:
            ConfigError: On the first invalid token, or if no codes remain
        """
        validated = []
        for code in country_codes.split(","):
            code = code.strip()
            if not code:
                continue
            validated.append(cls.validate_country_code(code))

        if not validated:
            raise ConfigError(
                code="no_country_codes",
                message="No valid country codes provided",
                details={"input": country_codes},
            )
        return validated

    @staticmethod
    def format_exit_nodes(codes: list[str]) -> str:
        return "{" + ",".join(codes) + "}"

    async def set_exit_country(
        self,
        session: ControlSession,
        country_codes: Union[str, list[str]],
    ) -> list[str]:
        """
        Restrict exit relays to the given countries.

        Args:
            session: Authenticated control session
            country_codes: ``"US"``, ``"us,ca"`` or a list of codes

        Returns:
            The validated, upper-cased codes that were applied

        Raises:
            ConfigError: If any code is invalid
            ControlCommandError: If the daemon rejects the setting
        """
        if isinstance(country_codes, str):
            codes = self.validate_country_codes(country_codes)
        else:
            codes = self.validate_country_codes(",".join(country_codes))

        exit_nodes = self.format_exit_nodes(codes)
        self._log(LogLevel.INFO, f"Setting exit node country to: {exit_nodes}")

        response = await session.send_command(build_setconf("ExitNodes", exit_nodes))

        if "552" in response.raw or "error" in response.raw.lower():
            raise ControlCommandError(
                code=ControlErrorCode.COMMAND_FAILED.value,
                message=f"Failed to set exit country: {response.first_line}",
                details={"exit_nodes": exit_nodes, "status_code": response.status_code},
            )

        self._log(LogLevel.INFO, f"Exit node country set to: {exit_nodes}")
        return codes

    async def clear_exit_country(self, session: ControlSession) -> None:
        """
        Remove any exit-country restriction.

        Raises:
            ControlCommandError: If the daemon rejects the change
        """
        self._log(LogLevel.INFO, "Clearing exit node country restriction")
        response = await session.send_command(build_setconf("ExitNodes", ""))

        if not response.is_success:
            raise ControlCommandError(
                code=ControlErrorCode.COMMAND_FAILED.value,
                message=f"Failed to clear exit country: {response.first_line}",
                details={"status_code": response.status_code},
            )

    async def get_exit_country(self, session: ControlSession) -> Optional[list[str]]:
        """
        Read the current restriction.

        Returns:
            The list of country codes, or None when exits are unrestricted
        """
        response = await session.send_command(build_getconf("ExitNodes"))
        return self.parse_exit_nodes(response.raw)

    @staticmethod
    def parse_exit_nodes(text: str) -> Optional[list[str]]:
        """Decode an ``ExitNodes=`` reply; empty or ``{}`` means unrestricted."""
        value = get_value(text, "ExitNodes")
        if value is None:
            return None

        nodes = value.replace("{", "").replace("}", "").strip()
        if not nodes:
            return None

        return [code.strip().upper() for code in nodes.split(",") if code.strip()]

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
