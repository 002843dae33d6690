"""Exception hierarchy for drivesync."""

from __future__ import annotations


class DriveSyncError(Exception):
    """Base exception for drivesync."""


class ConfigError(DriveSyncError):
    """Raised when configuration is missing or invalid."""


class UnknownServiceError(DriveSyncError):
    """Raised when a service id is not configured."""

    def __init__(self, service_id: str) -> None:
        super().__init__(f"Unknown service: {service_id}")
        self.service_id = service_id


class StateStoreError(DriveSyncError):
    """Raised when the breaker state file cannot be written."""
