"""Shared types for drivesync.

This module defines the enums and value objects used by the reliability
engine, the sync executor and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum


class ErrorKind(str, Enum):
    """Classification bucket for a failed sync attempt.

    Each kind selects its own failure threshold and reset timeout.
    """

    TRANSIENT = "transient"
    AUTHENTICATION = "authentication"
    CONFLICT = "conflict"
    QUOTA = "quota"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    PERMANENT = "permanent"
    PARTIAL_SYNC = "partial_sync"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> ErrorKind | None:
        """Parse a persisted error type.

        Empty values and legacy markers (such as "reset") mean no error
        was recorded.
        """
        if not value:
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


class CircuitState(str, Enum):
    """State of a per-service circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class ServiceCircuit:
    """Persisted breaker record for one sync target.

    Attributes:
        service_id: Stable service key (e.g. "icloud").
        state: Current breaker state.
        failure_count: Failures since the last success or reset.
        last_failure_time: Time of the most recent failure.
        last_error_type: Kind of the most recent failure.
        last_updated: Time the record was last written.
    """

    service_id: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: datetime | None = None
    last_error_type: ErrorKind | None = None
    last_updated: datetime | None = None

    @classmethod
    def initial(cls, service_id: str) -> ServiceCircuit:
        """Create the record a service starts with on first reference."""
        return cls(service_id=service_id)

    def evolve(self, **changes: object) -> ServiceCircuit:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]


@dataclass
class SyncAttemptResult:
    """Outcome of one SyncExecutor run for a service.

    Attributes:
        service_id: Service that was synced.
        success: Whether the final tool invocation succeeded.
        error_kind: Classified failure kind (None on success).
        exit_code: Exit code of the last tool invocation, if any ran.
        duration: Wall-clock seconds spent on the whole run.
        attempts: Number of tool invocations made (0, 1 or 2).
        blocked: True if the circuit breaker refused the run.
        cancelled: True if the run was interrupted by a shutdown request.
        message: Human-readable summary.
    """

    service_id: str
    success: bool
    error_kind: ErrorKind | None = None
    exit_code: int | None = None
    duration: float = 0.0
    attempts: int = 0
    blocked: bool = False
    cancelled: bool = False
    message: str = field(default="")
