"""Core module - Shared types, errors, and configuration."""

from drivesync.core.config import (
    DEFAULT_ERROR_POLICIES,
    BreakerConfig,
    DriveSyncConfig,
    ErrorPolicy,
    ProbeConfig,
    ServiceConfig,
    SyncStrategy,
)
from drivesync.core.errors import (
    ConfigError,
    DriveSyncError,
    StateStoreError,
    UnknownServiceError,
)
from drivesync.core.types import (
    CircuitState,
    ErrorKind,
    ServiceCircuit,
    SyncAttemptResult,
)

__all__ = [
    # Config
    "DEFAULT_ERROR_POLICIES",
    "BreakerConfig",
    "DriveSyncConfig",
    "ErrorPolicy",
    "ProbeConfig",
    "ServiceConfig",
    "SyncStrategy",
    # Errors
    "ConfigError",
    "DriveSyncError",
    "StateStoreError",
    "UnknownServiceError",
    # Types
    "CircuitState",
    "ErrorKind",
    "ServiceCircuit",
    "SyncAttemptResult",
]
