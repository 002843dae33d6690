"""Sync orchestration for one or all services.

Flow per service:
    CircuitBreaker.allow → AvailabilityProbe → placeholder download
    → ensure hub → baseline tool run → (classify, conservative retry)
    → CircuitBreaker.record_result (exactly once, with the baseline kind)

A run interrupted by cancellation is not an outcome: the breaker records
the last tool invocation that completed, or nothing if none did.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor

from drivesync.core.config import DriveSyncConfig, ServiceConfig
from drivesync.core.errors import StateStoreError
from drivesync.core.types import ErrorKind, SyncAttemptResult
from drivesync.reliability.breaker import CircuitBreaker
from drivesync.reliability.classifier import classify
from drivesync.sync.hub import ensure_sync_hub, request_placeholder_download
from drivesync.sync.probe import AvailabilityProbe
from drivesync.sync.runner import ToolRun, run_tool

logger = logging.getLogger(__name__)

ToolRunner = Callable[[list[str], float, threading.Event | None], ToolRun]
Classifier = Callable[[int | None, str], ErrorKind]


class SyncExecutor:
    """Runs guarded sync attempts for configured services.

    Usage:
        executor = SyncExecutor(config, breaker, probe)
        result = executor.sync("google_drive", cancel=stop_event)
        results = executor.sync_all(cancel=stop_event)
    """

    def __init__(
        self,
        config: DriveSyncConfig,
        breaker: CircuitBreaker,
        probe: AvailabilityProbe,
        runner: ToolRunner = run_tool,
        classifier: Classifier = classify,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            config: Runtime configuration (services, hub, strategy).
            breaker: Circuit breaker guarding each service.
            probe: Mount availability probe.
            runner: Invokes the external tool.
            classifier: Maps a failed run to an ErrorKind.
            log: Logger to use (defaults to this module's logger).
        """
        self._config = config
        self._breaker = breaker
        self._probe = probe
        self._runner = runner
        self._classifier = classifier
        self._log = log or logger

    def _run(self, command: list[str], timeout: float, cancel: threading.Event) -> ToolRun:
        try:
            return self._runner(command, timeout, cancel)
        except OSError as e:
            return ToolRun(None, str(e))

    def _prepare_hub(self, service: ServiceConfig) -> ErrorKind | None:
        """Create the hub skeleton.

        Returns:
            The classified kind if the hub could not be created, else None.
        """
        try:
            ensure_sync_hub(self._config.sync_hub, self._config.hub_folders)
        except OSError as e:
            self._log.error(f"Preparing {service.service_id} sync failed: {e}")
            return self._classifier(None, str(e))
        return None

    def sync(self, service_id: str, cancel: threading.Event | None = None) -> SyncAttemptResult:
        """Run one guarded sync for a service.

        Args:
            service_id: Configured service to sync.
            cancel: Shutdown request; stops probing and the running tool.

        Returns:
            The attempt result. Tool and probe failures are reported here,
            never raised.

        Raises:
            UnknownServiceError: If the service is not configured.
        """
        service = self._config.service(service_id)
        cancel = cancel or threading.Event()
        strategy = self._config.strategy
        start = time.monotonic()

        def result(success: bool, **fields: object) -> SyncAttemptResult:
            return SyncAttemptResult(
                service_id=service_id,
                success=success,
                duration=time.monotonic() - start,
                **fields,  # type: ignore[arg-type]
            )

        self._log.info(f"Performing reliable sync with {service_id}...")

        if not self._breaker.allow(service_id):
            self._log.warning(f"Circuit breaker is open for {service_id} - skipping sync")
            return result(False, blocked=True, message="blocked by circuit breaker")

        available = self._probe.wait_until_available(
            service_id,
            max_attempts=self._config.probe.max_attempts,
            interval=self._config.probe.interval,
            cancel=cancel,
        )
        if cancel.is_set():
            return result(False, cancelled=True, message="cancelled before sync started")
        if not available:
            self._log.warning(f"Skipping {service_id} sync due to accessibility issues")
            self._breaker.record_result(service_id, False, ErrorKind.NETWORK)
            return result(False, error_kind=ErrorKind.NETWORK, message="mount not available")

        if service.force_download:
            self._log.info(f"Forcing download of {service_id} placeholder files...")
            request_placeholder_download(service.mount_path, cancel=cancel)
            if cancel.is_set():
                return result(False, cancelled=True, message="cancelled before sync started")

        failed_kind = self._prepare_hub(service)
        if failed_kind is not None:
            self._breaker.record_result(service_id, False, failed_kind)
            return result(False, error_kind=failed_kind, message="sync hub could not be prepared")

        self._log.info(f"Running {strategy.tool} sync with {service_id}...")
        first = self._run(strategy.baseline_command(service.profile), strategy.baseline_timeout, cancel)
        if first.cancelled:
            return result(False, cancelled=True, attempts=1, exit_code=first.exit_code, message="cancelled")
        if first.success:
            self._log.info(f"{service_id} sync completed successfully in {first.duration:.1f}s")
            self._breaker.record_result(service_id, True)
            return result(True, attempts=1, exit_code=0, message="synced")

        first_kind = self._classifier(first.exit_code, first.output)
        self._log.warning(f"{service_id} sync failed with exit code {first.exit_code} ({first_kind.value})")
        self._log.debug(f"{service_id} output:\n{first.output}")

        if cancel.is_set():
            self._breaker.record_result(service_id, False, first_kind)
            return result(
                False, cancelled=True, attempts=1, exit_code=first.exit_code,
                error_kind=first_kind, message="cancelled before retry",
            )

        self._log.info(f"Retrying {service_id} with fallback options (timeout {strategy.retry_timeout:.0f}s)...")
        second = self._run(strategy.retry_command(service.profile), strategy.retry_timeout, cancel)
        if second.cancelled:
            self._breaker.record_result(service_id, False, first_kind)
            return result(
                False, cancelled=True, attempts=2, exit_code=first.exit_code,
                error_kind=first_kind, message="cancelled during retry",
            )
        if second.success:
            self._log.info(f"{service_id} sync retry completed successfully")
            self._breaker.record_result(service_id, True)
            return result(True, attempts=2, exit_code=0, message="synced on retry")

        # The baseline classification is the recorded kind
        second_kind = self._classifier(second.exit_code, second.output)
        self._log.error(
            f"{service_id} sync retry also failed with exit code {second.exit_code} "
            f"({second_kind.value}); recording {first_kind.value}"
        )
        self._log.debug(f"{service_id} retry output:\n{second.output}")
        self._breaker.record_result(service_id, False, first_kind)
        return result(
            False, attempts=2, exit_code=second.exit_code,
            error_kind=first_kind, message="sync failed after retry",
        )

    def sync_all(
        self,
        service_ids: Iterable[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> list[SyncAttemptResult]:
        """Sync several services concurrently.

        Each service runs as an independent task; one failing or blocked
        service never prevents the others from running.

        Args:
            service_ids: Services to sync (default: all configured).
            cancel: Shutdown request shared by every task.

        Returns:
            Results in the order the services were given.

        Raises:
            UnknownServiceError: If a service is not configured.
        """
        ids = list(self._config.service_ids if service_ids is None else service_ids)
        for service_id in ids:
            self._config.service(service_id)
        if not ids:
            return []

        cancel = cancel or threading.Event()

        def task(service_id: str) -> SyncAttemptResult:
            try:
                return self.sync(service_id, cancel)
            except StateStoreError as e:
                self._log.error(f"Sync of {service_id} aborted: {e}")
                return SyncAttemptResult(service_id=service_id, success=False, message=str(e))

        with ThreadPoolExecutor(max_workers=len(ids), thread_name_prefix="drivesync") as pool:
            return list(pool.map(task, ids))
