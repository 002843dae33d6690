"""Configuration classes for drivesync.

This module defines the immutable policy map used by the circuit breaker
and the runtime configuration consumed by the executor and the CLI.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from drivesync.core.errors import ConfigError, UnknownServiceError
from drivesync.core.types import ErrorKind


@dataclass(frozen=True)
class ErrorPolicy:
    """Breaker tuning for one error kind.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        reset_timeout: Seconds before an open circuit may be probed.
    """

    failure_threshold: int
    reset_timeout: float


DEFAULT_ERROR_POLICIES: Mapping[ErrorKind, ErrorPolicy] = MappingProxyType({
    ErrorKind.AUTHENTICATION: ErrorPolicy(3, 3600),
    ErrorKind.CONFLICT: ErrorPolicy(4, 1800),
    ErrorKind.QUOTA: ErrorPolicy(2, 7200),
    ErrorKind.NETWORK: ErrorPolicy(5, 900),
    ErrorKind.CONFIGURATION: ErrorPolicy(2, 3600),
    ErrorKind.TRANSIENT: ErrorPolicy(8, 600),
    ErrorKind.PERMANENT: ErrorPolicy(1, 86400),
    ErrorKind.PARTIAL_SYNC: ErrorPolicy(5, 43200),
    ErrorKind.UNKNOWN: ErrorPolicy(5, 1800),
})

# A half-open trial not reported back within this window is considered
# abandoned and may be granted again.
DEFAULT_HALF_OPEN_TIMEOUT = 1800.0

DEFAULT_HUB_FOLDERS = (
    "📚 Research Papers",
    "🤖 AI & ML",
    "💻 Development",
    "🌐 Web Content",
    "📝 Notes & Drafts",
)

ENV_PREFIX = "DRIVESYNC_"


@dataclass(frozen=True)
class BreakerConfig:
    """Circuit breaker configuration.

    Attributes:
        policies: Read-only map from error kind to its policy.
        half_open_timeout: Lease length of a half-open trial, in seconds.
    """

    policies: Mapping[ErrorKind, ErrorPolicy] = field(default_factory=lambda: DEFAULT_ERROR_POLICIES)
    half_open_timeout: float = DEFAULT_HALF_OPEN_TIMEOUT

    def policy_for(self, kind: ErrorKind | None) -> ErrorPolicy:
        """Get the policy for an error kind, using UNKNOWN as the fallback."""
        if kind is not None and kind in self.policies:
            return self.policies[kind]
        return self.policies.get(ErrorKind.UNKNOWN, DEFAULT_ERROR_POLICIES[ErrorKind.UNKNOWN])

    def failure_threshold(self, kind: ErrorKind | None) -> int:
        return self.policy_for(kind).failure_threshold

    def reset_timeout(self, kind: ErrorKind | None) -> float:
        return self.policy_for(kind).reset_timeout

    @classmethod
    def with_overrides(
        cls,
        thresholds: Mapping[str, Any] | None = None,
        reset_timeouts: Mapping[str, Any] | None = None,
        half_open_timeout: float = DEFAULT_HALF_OPEN_TIMEOUT,
    ) -> BreakerConfig:
        """Build a config from the defaults plus per-kind overrides.

        Args:
            thresholds: Map of error kind name to failure threshold.
            reset_timeouts: Map of error kind name to reset timeout (seconds).
            half_open_timeout: Half-open trial lease in seconds.

        Raises:
            ConfigError: If a kind name is unknown or a value is invalid.
        """
        policies = dict(DEFAULT_ERROR_POLICIES)

        for name, value in (thresholds or {}).items():
            kind = _parse_kind(name)
            threshold = _as_number(value, f"thresholds.{name}", int)
            if threshold < 1:
                raise ConfigError(f"thresholds.{name} must be at least 1")
            policies[kind] = ErrorPolicy(threshold, policies[kind].reset_timeout)

        for name, value in (reset_timeouts or {}).items():
            kind = _parse_kind(name)
            timeout = _as_number(value, f"reset_timeouts.{name}", float)
            if timeout < 0:
                raise ConfigError(f"reset_timeouts.{name} must not be negative")
            policies[kind] = ErrorPolicy(policies[kind].failure_threshold, timeout)

        if half_open_timeout <= 0:
            raise ConfigError("half_open_timeout must be positive")

        return cls(policies=MappingProxyType(policies), half_open_timeout=half_open_timeout)


@dataclass(frozen=True)
class SyncStrategy:
    """How the external sync tool is invoked.

    The baseline run uses ``baseline_args``; the single conservative retry
    adds a preference for the newer file, lets the tool retry failed items
    ``tool_retries`` times, and multiplies the timeout.

    Attributes:
        tool: Executable name or path (Unison).
        baseline_args: Arguments placed before the profile name.
        baseline_timeout: Timeout of the first invocation, in seconds.
        retry_timeout_multiplier: Timeout multiplier for the retry.
        prefer: Value of ``-prefer`` on the retry.
        tool_retries: Value of ``-retry`` on the retry.
    """

    tool: str = "unison"
    baseline_args: tuple[str, ...] = ("-batch", "-ui", "text", "-times")
    baseline_timeout: float = 300.0
    retry_timeout_multiplier: float = 2.0
    prefer: str = "newer"
    tool_retries: int = 1

    @property
    def retry_timeout(self) -> float:
        return self.baseline_timeout * self.retry_timeout_multiplier

    def baseline_command(self, profile: str) -> list[str]:
        """Build the first-attempt command line."""
        return [self.tool, *self.baseline_args, profile]

    def retry_command(self, profile: str) -> list[str]:
        """Build the conservative retry command line."""
        args = list(self.baseline_args)
        if "-prefer" not in args:
            args += ["-prefer", self.prefer]
        if self.tool_retries > 0 and "-retry" not in args:
            args += ["-retry", str(self.tool_retries)]
        return [self.tool, *args, profile]


@dataclass(frozen=True)
class ProbeConfig:
    """Availability probe configuration.

    Attributes:
        listing_timeout: Seconds allowed for a directory listing.
        max_attempts: Probes made by wait_until_available.
        interval: Seconds between probes.
    """

    listing_timeout: float = 10.0
    max_attempts: int = 10
    interval: float = 5.0


@dataclass(frozen=True)
class ServiceConfig:
    """A cloud mirror kept in sync with the hub.

    Attributes:
        service_id: Stable key used in the breaker state file.
        mount_path: Local mount point of the cloud drive.
        profile: Sync tool profile name.
        force_download: Request download of cloud-only placeholders first.
    """

    service_id: str
    mount_path: Path
    profile: str
    force_download: bool = False


@dataclass(frozen=True)
class DriveSyncConfig:
    """Complete runtime configuration.

    Attributes:
        services: Configured sync targets, in sync order.
        sync_hub: Local hub directory mirrored to every service.
        state_file: Path of the persisted breaker state.
        hub_folders: Skeleton folders created inside the hub.
        breaker: Circuit breaker policies.
        strategy: External tool invocation strategy.
        probe: Availability probe settings.
        notifications: Send a desktop notification when a circuit opens.
    """

    services: tuple[ServiceConfig, ...]
    sync_hub: Path
    state_file: Path
    hub_folders: tuple[str, ...] = DEFAULT_HUB_FOLDERS
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    strategy: SyncStrategy = field(default_factory=SyncStrategy)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    notifications: bool = False

    @property
    def service_ids(self) -> list[str]:
        return [s.service_id for s in self.services]

    def service(self, service_id: str) -> ServiceConfig:
        """Get a configured service.

        Raises:
            UnknownServiceError: If the service is not configured.
        """
        for service in self.services:
            if service.service_id == service_id:
                return service
        raise UnknownServiceError(service_id)

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        config_dir: Path,
        environ: Mapping[str, str] | None = None,
    ) -> DriveSyncConfig:
        """Build the configuration from config.json data and environment.

        Environment variables take precedence over the file.

        Args:
            data: Parsed config.json contents.
            config_dir: Directory holding config and state files.
            environ: Environment mapping (defaults to os.environ).

        Raises:
            ConfigError: If a value is invalid.
        """
        env = os.environ if environ is None else environ
        home = Path.home()

        def setting(key: str, default: Any) -> Any:
            env_value = env.get(f"{ENV_PREFIX}{key.upper()}")
            if env_value:
                return env_value
            return data.get(key, default)

        sync_hub = _as_path(setting("sync_hub", home / "local_sync_hub"))
        icloud_path = _as_path(setting("icloud_path", home / "icloud_sync"))
        gdrive_path = _as_path(setting("gdrive_path", home / "gdrive_sync"))
        state_file = _as_path(data.get("state_file", config_dir / "circuit_breaker_state.json"))

        services_data = data.get("services")
        if services_data:
            services = tuple(_parse_service(item) for item in services_data)
        else:
            services = (
                ServiceConfig("icloud", icloud_path, "icloud", force_download=True),
                ServiceConfig("google_drive", gdrive_path, "google_drive"),
            )
        ids = [s.service_id for s in services]
        if len(set(ids)) != len(ids):
            raise ConfigError("Service ids must be unique")

        thresholds = dict(data.get("thresholds", {}))
        reset_timeouts = dict(data.get("reset_timeouts", {}))
        for kind in ErrorKind:
            name = kind.value.upper()
            if env.get(f"{ENV_PREFIX}THRESHOLD_{name}"):
                thresholds[kind.value] = env[f"{ENV_PREFIX}THRESHOLD_{name}"]
            if env.get(f"{ENV_PREFIX}RESET_TIMEOUT_{name}"):
                reset_timeouts[kind.value] = env[f"{ENV_PREFIX}RESET_TIMEOUT_{name}"]

        breaker = BreakerConfig.with_overrides(
            thresholds,
            reset_timeouts,
            half_open_timeout=_as_number(
                data.get("half_open_timeout", DEFAULT_HALF_OPEN_TIMEOUT),
                "half_open_timeout",
                float,
            ),
        )

        strategy_data = dict(data.get("strategy", {}))
        if env.get(f"{ENV_PREFIX}UNISON"):
            strategy_data["tool"] = env[f"{ENV_PREFIX}UNISON"]
        strategy = _parse_strategy(strategy_data)
        probe = _parse_probe(dict(data.get("probe", {})))

        hub_folders = tuple(data.get("hub_folders", DEFAULT_HUB_FOLDERS))

        return cls(
            services=services,
            sync_hub=sync_hub,
            state_file=state_file,
            hub_folders=hub_folders,
            breaker=breaker,
            strategy=strategy,
            probe=probe,
            notifications=bool(data.get("notifications", False)),
        )


def _parse_kind(name: str) -> ErrorKind:
    try:
        return ErrorKind(str(name).lower())
    except ValueError:
        raise ConfigError(f"Unknown error kind: {name}") from None


def _as_number(value: Any, key: str, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}") from None


def _as_path(value: Any) -> Path:
    return Path(value).expanduser()


def _parse_service(item: Mapping[str, Any]) -> ServiceConfig:
    try:
        service_id = str(item["id"])
        mount_path = _as_path(item["mount_path"])
    except (KeyError, TypeError):
        raise ConfigError("Each service needs 'id' and 'mount_path'") from None
    return ServiceConfig(
        service_id=service_id,
        mount_path=mount_path,
        profile=str(item.get("profile", service_id)),
        force_download=bool(item.get("force_download", False)),
    )


def _parse_strategy(data: Mapping[str, Any]) -> SyncStrategy:
    defaults = SyncStrategy()
    strategy = SyncStrategy(
        tool=str(data.get("tool", defaults.tool)),
        baseline_args=tuple(str(a) for a in data.get("baseline_args", defaults.baseline_args)),
        baseline_timeout=_as_number(
            data.get("baseline_timeout", defaults.baseline_timeout), "strategy.baseline_timeout", float
        ),
        retry_timeout_multiplier=_as_number(
            data.get("retry_timeout_multiplier", defaults.retry_timeout_multiplier),
            "strategy.retry_timeout_multiplier",
            float,
        ),
        prefer=str(data.get("prefer", defaults.prefer)),
        tool_retries=_as_number(data.get("tool_retries", defaults.tool_retries), "strategy.tool_retries", int),
    )
    if strategy.baseline_timeout <= 0:
        raise ConfigError("strategy.baseline_timeout must be positive")
    if strategy.retry_timeout_multiplier < 1:
        raise ConfigError("strategy.retry_timeout_multiplier must be at least 1")
    if strategy.tool_retries < 0:
        raise ConfigError("strategy.tool_retries must not be negative")
    return strategy


def _parse_probe(data: Mapping[str, Any]) -> ProbeConfig:
    defaults = ProbeConfig()
    probe = ProbeConfig(
        listing_timeout=_as_number(
            data.get("listing_timeout", defaults.listing_timeout), "probe.listing_timeout", float
        ),
        max_attempts=_as_number(data.get("max_attempts", defaults.max_attempts), "probe.max_attempts", int),
        interval=_as_number(data.get("interval", defaults.interval), "probe.interval", float),
    )
    if probe.max_attempts < 1:
        raise ConfigError("probe.max_attempts must be at least 1")
    if probe.listing_timeout <= 0 or probe.interval < 0:
        raise ConfigError("probe timings must not be negative")
    return probe
