"""
Tor Resilience - control-port client and bridge fallback engine.

This package drives a local Tor daemon through its control port, inspects
circuits and relays, restricts exit countries, and falls back to bridges
when the primary path stops working.
"""

__version__ = "0.1.0"
__author__ = "Tor Resilience Team"

from tor_resilience.exceptions import (
    TorResilienceError,
    ControlConnectionError,
    AuthenticationError,
    ProtocolParseError,
    ControlCommandError,
    ConfigError,
    BridgeUnreachableError,
    OperationTimeoutError,
    BridgeStoreError,
    DiscoveryError,
)
from tor_resilience.enums import (
    LogLevel,
    ControlErrorCode,
    BridgeErrorCode,
    DiscoveryErrorCode,
    ProbeOutcome,
    FallbackPhase,
)
from tor_resilience.config import (
    ControlConfig,
    RetryConfig,
    FallbackConfig,
    BridgeConfig,
    LoggingConfig,
    SystemConfig,
    config_from_dict,
    apply_env_overrides,
    validate_config,
    load_config,
)
from tor_resilience.audit_logger import (
    AuditLogger,
    LogEntry,
    create_logger,
)
from tor_resilience.protocol import (
    Response,
    parse_response,
    parse_status_code,
)
from tor_resilience.control_session import (
    ControlSession,
    DaemonStatus,
)
from tor_resilience.circuits import (
    CircuitInfo,
    CircuitInspector,
)
from tor_resilience.relays import (
    RelayInfo,
    RelayInspector,
    normalize_fingerprint,
)
from tor_resilience.country import (
    ExitCountrySelector,
)
from tor_resilience.bridges import (
    Bridge,
    dedupe_bridges,
)
from tor_resilience.bridge_store import (
    BridgeStore,
)
from tor_resilience.probe import (
    BridgeProber,
    ProbeResult,
)
from tor_resilience.retry_manager import (
    RetryManager,
    RetryResult,
)
from tor_resilience.fallback import (
    FallbackEngine,
    FallbackResult,
    FallbackState,
)
from tor_resilience.discovery import (
    DiscoveryClient,
    DiscoveryFailure,
    DiscoveryResponse,
)
from tor_resilience.collector import (
    BridgeCollector,
    BridgeMetadata,
    BridgeScoreboard,
)
from tor_resilience.orchestrator import (
    ResilienceOrchestrator,
)

__all__ = [
    # Exceptions
    "TorResilienceError",
    "ControlConnectionError",
    "AuthenticationError",
    "ProtocolParseError",
    "ControlCommandError",
    "ConfigError",
    "BridgeUnreachableError",
    "OperationTimeoutError",
    "BridgeStoreError",
    "DiscoveryError",
    # Enums
    "LogLevel",
    "ControlErrorCode",
    "BridgeErrorCode",
    "DiscoveryErrorCode",
    "ProbeOutcome",
    "FallbackPhase",
    # Configuration
    "ControlConfig",
    "RetryConfig",
    "FallbackConfig",
    "BridgeConfig",
    "LoggingConfig",
    "SystemConfig",
    "config_from_dict",
    "apply_env_overrides",
    "validate_config",
    "load_config",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    "create_logger",
    # Protocol
    "Response",
    "parse_response",
    "parse_status_code",
    # Control Session
    "ControlSession",
    "DaemonStatus",
    # Circuits
    "CircuitInfo",
    "CircuitInspector",
    # Relays
    "RelayInfo",
    "RelayInspector",
    "normalize_fingerprint",
    # Exit Country
    "ExitCountrySelector",
    # Bridges
    "Bridge",
    "dedupe_bridges",
    "BridgeStore",
    "BridgeProber",
    "ProbeResult",
    # Retry Manager
    "RetryManager",
    "RetryResult",
    # Fallback
    "FallbackEngine",
    "FallbackResult",
    "FallbackState",
    # Bridge Acquisition
    "DiscoveryClient",
    "DiscoveryFailure",
    "DiscoveryResponse",
    "BridgeCollector",
    "BridgeMetadata",
    "BridgeScoreboard",
    # Orchestration
    "ResilienceOrchestrator",
]
