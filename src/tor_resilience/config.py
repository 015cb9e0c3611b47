"""
Configuration dataclasses for the tor_resilience package.

This module defines the configuration structures used throughout the system:
control-port access, fallback timing, retry backoff, bridge acquisition and
logging. Settings can be read from a JSON file and overridden through
environment variables (a local .env file is honoured).
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError

DEFAULT_CONTROL_PORT = 9051
DEFAULT_COOKIE_PATH = Path("/var/run/tor/control.authcookie")
DEFAULT_BRIDGE_FILE = Path("/etc/tor/tor-resilience-bridges/bridges.conf")
DEFAULT_DISCOVERY_URL = "https://bridges.torproject.org/moat/circumvention/bridges"

ENV_PREFIX = "TOR_RESILIENCE_"


@dataclass
class ControlConfig:
    """Control-port connection settings."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_CONTROL_PORT
    timeout_seconds: float = 30.0
    cookie_path: Path = DEFAULT_COOKIE_PATH
    max_reply_bytes: int = 65536


@dataclass
class RetryConfig:
    """Backoff configuration for repeated fallback attempts."""

    max_attempts: int = 4
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0


@dataclass
class FallbackConfig:
    """Fallback engine timing configuration."""

    health_timeout_seconds: float = 30.0
    bridge_timeout_seconds: float = 60.0
    order_by_score: bool = False
    monitor_interval_seconds: float = 60.0
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class BridgeConfig:
    """Bridge store and bridge discovery configuration."""

    store_path: Path = DEFAULT_BRIDGE_FILE
    discovery_url: str = DEFAULT_DISCOVERY_URL
    transport: str = "obfs4"
    http_timeout_seconds: float = 30.0
    probe_timeout_seconds: float = 5.0
    collection_interval_days: int = 7
    user_agent: str = "tor-resilience/0.1.0"

    @property
    def collection_interval_seconds(self) -> float:
        return float(self.collection_interval_days * 86400)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main configuration combining all sub-configurations."""

    control: ControlConfig = field(default_factory=ControlConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    bridges: BridgeConfig = field(default_factory=BridgeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    auto_fallback: bool = True
    auto_collect_bridges: bool = True
    exit_country: Optional[str] = None


# (env suffix, section, attribute, converter)
_ENV_OVERRIDES: list[tuple[str, str, str, Callable[[str], Any]]] = [
    ("CONTROL_HOST", "control", "host", str),
    ("CONTROL_PORT", "control", "port", int),
    ("CONTROL_TIMEOUT", "control", "timeout_seconds", float),
    ("COOKIE_PATH", "control", "cookie_path", Path),
    ("HEALTH_TIMEOUT", "fallback", "health_timeout_seconds", float),
    ("BRIDGE_TIMEOUT", "fallback", "bridge_timeout_seconds", float),
    ("BRIDGE_FILE", "bridges", "store_path", Path),
    ("DISCOVERY_URL", "bridges", "discovery_url", str),
    ("TRANSPORT", "bridges", "transport", str),
    ("LOG_LEVEL", "logging", "level", str),
    ("LOG_FORMAT", "logging", "output_format", str),
]


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def config_from_dict(data: dict) -> SystemConfig:
    """
    Build a SystemConfig from a parsed JSON document.

    Unknown keys are ignored; missing keys keep their defaults.

    Raises:
        ConfigError: If a value has the wrong type
    """
    try:
        control_data = data.get("control", {})
        control = ControlConfig(
            host=control_data.get("host", "127.0.0.1"),
            port=int(control_data.get("port", DEFAULT_CONTROL_PORT)),
            timeout_seconds=float(control_data.get("timeout_seconds", 30.0)),
            cookie_path=Path(control_data.get("cookie_path", DEFAULT_COOKIE_PATH)),
            max_reply_bytes=int(control_data.get("max_reply_bytes", 65536)),
        )

        fallback_data = data.get("fallback", {})
        retry_data = fallback_data.get("retry", {})
        fallback = FallbackConfig(
            health_timeout_seconds=float(fallback_data.get("health_timeout_seconds", 30.0)),
            bridge_timeout_seconds=float(fallback_data.get("bridge_timeout_seconds", 60.0)),
            order_by_score=bool(fallback_data.get("order_by_score", False)),
            monitor_interval_seconds=float(fallback_data.get("monitor_interval_seconds", 60.0)),
            retry=RetryConfig(
                max_attempts=int(retry_data.get("max_attempts", 4)),
                base_delay_seconds=float(retry_data.get("base_delay_seconds", 1.0)),
                max_delay_seconds=float(retry_data.get("max_delay_seconds", 60.0)),
            ),
        )

        bridge_data = data.get("bridges", {})
        bridges = BridgeConfig(
            store_path=Path(bridge_data.get("store_path", DEFAULT_BRIDGE_FILE)),
            discovery_url=bridge_data.get("discovery_url", DEFAULT_DISCOVERY_URL),
            transport=bridge_data.get("transport", "obfs4"),
            http_timeout_seconds=float(bridge_data.get("http_timeout_seconds", 30.0)),
            probe_timeout_seconds=float(bridge_data.get("probe_timeout_seconds", 5.0)),
            collection_interval_days=int(bridge_data.get("collection_interval_days", 7)),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            output_format=logging_data.get("output_format", "text"),
        )

        config = SystemConfig(
            control=control,
            fallback=fallback,
            bridges=bridges,
            logging=logging_config,
            auto_fallback=bool(data.get("auto_fallback", True)),
            auto_collect_bridges=bool(data.get("auto_collect_bridges", True)),
            exit_country=data.get("exit_country"),
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigError(
            code="invalid_value",
            message=f"Invalid configuration value: {e}",
        )

    validate_config(config)
    return config


def apply_env_overrides(config: SystemConfig, environ: Optional[dict] = None) -> SystemConfig:
    """
    Apply TOR_RESILIENCE_* environment variables on top of a config.

    Args:
        config: Configuration to update in place
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        The same config object, for chaining
    """
    env = os.environ if environ is None else environ

    for suffix, section, attribute, convert in _ENV_OVERRIDES:
        raw = env.get(ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError:
            raise ConfigError(
                code="invalid_value",
                message=f"Invalid value for {ENV_PREFIX + suffix}: {raw!r}",
                details={"variable": ENV_PREFIX + suffix},
            )
        setattr(getattr(config, section), attribute, value)

    if env.get(ENV_PREFIX + "AUTO_FALLBACK"):
        config.auto_fallback = _parse_bool(env[ENV_PREFIX + "AUTO_FALLBACK"])
    if env.get(ENV_PREFIX + "EXIT_COUNTRY"):
        config.exit_country = env[ENV_PREFIX + "EXIT_COUNTRY"]

    validate_config(config)
    return config


def validate_config(config: SystemConfig) -> None:
    """
    Reject settings the components cannot work with.

    Raises:
        ConfigError: If a port, timeout or format is out of range
    """
    if not 1 <= config.control.port <= 65535:
        raise ConfigError(
            code="invalid_port",
            message=f"Control port must be between 1 and 65535, got {config.control.port}",
        )
    for name, value in (
        ("control.timeout_seconds", config.control.timeout_seconds),
        ("fallback.health_timeout_seconds", config.fallback.health_timeout_seconds),
        ("fallback.bridge_timeout_seconds", config.fallback.bridge_timeout_seconds),
        ("bridges.probe_timeout_seconds", config.bridges.probe_timeout_seconds),
    ):
        if value <= 0:
            raise ConfigError(
                code="invalid_timeout",
                message=f"{name} must be positive, got {value}",
            )
    if config.fallback.retry.max_attempts < 1:
        raise ConfigError(
            code="invalid_retry",
            message="fallback.retry.max_attempts must be at least 1",
        )
    if config.logging.output_format not in ("json", "text", "both"):
        raise ConfigError(
            code="invalid_format",
            message=f"Invalid logging.output_format: {config.logging.output_format}",
        )


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """
    Load configuration from an optional JSON file plus the environment.

    Args:
        config_path: Path to a JSON configuration file; None or a missing
            file means built-in defaults

    Returns:
        The resulting SystemConfig

    Raises:
        ConfigError: If the file is not valid JSON or holds invalid values
    """
    load_dotenv()

    data: dict = {}
    if config_path is not None and config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(
                code="parse_error",
                message=f"Failed to parse config file: {e}",
                details={"file_path": str(config_path)},
            )
        if not isinstance(data, dict):
            raise ConfigError(
                code="parse_error",
                message="Config file must contain a JSON object",
                details={"file_path": str(config_path)},
            )

    return apply_env_overrides(config_from_dict(data))
