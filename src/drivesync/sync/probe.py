"""Cloud mount availability checks.

This module provides:
- AvailabilityProbe.probe: One bounded check of a mount point
- AvailabilityProbe.wait_until_available: Bounded, cancellable polling
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Mapping
from pathlib import Path

from drivesync.core.config import ProbeConfig, ServiceConfig
from drivesync.core.errors import UnknownServiceError

logger = logging.getLogger(__name__)


def list_directory(path: Path, timeout: float) -> bool:
    """List a directory on a helper thread, giving up after timeout.

    Cloud drive mounts can hang indefinitely on I/O; the helper thread is a
    daemon so a stuck listing never blocks interpreter shutdown.

    Args:
        path: Directory to list.
        timeout: Seconds to wait for the listing.

    Returns:
        True if the listing completed without error in time.
    """
    outcome: dict[str, bool] = {}

    def _list() -> None:
        try:
            with os.scandir(path) as entries:
                for _ in entries:
                    pass
            outcome["ok"] = True
        except OSError as e:
            logger.debug(f"Listing {path} failed: {e}")
            outcome["ok"] = False

    worker = threading.Thread(target=_list, name=f"probe-{path.name}", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        logger.warning(f"Listing {path} did not complete within {timeout:.0f}s")
        return False
    return outcome.get("ok", False)


class AvailabilityProbe:
    """Checks whether each service's cloud mount is present and responsive."""

    def __init__(
        self,
        services: Mapping[str, ServiceConfig],
        config: ProbeConfig | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            services: Configured services by id.
            config: Listing timeout and polling defaults.
            log: Logger to use (defaults to this module's logger).
        """
        self._services = dict(services)
        self._config = config or ProbeConfig()
        self._log = log or logger

    @property
    def config(self) -> ProbeConfig:
        return self._config

    def mount_path(self, service_id: str) -> Path:
        """Get the mount point of a service.

        Raises:
            UnknownServiceError: If the service is not configured.
        """
        try:
            return self._services[service_id].mount_path
        except KeyError:
            raise UnknownServiceError(service_id) from None

    def probe(self, service_id: str) -> bool:
        """Check a service's mount once.

        Args:
            service_id: Service to check.

        Returns:
            True if the mount exists and lists within the timeout.
        """
        path = self.mount_path(service_id)
        self._log.info(f"Checking {service_id} accessibility...")

        if not path.is_dir():
            self._log.info(f"{service_id} path not found: {path}")
            return False

        if list_directory(path, self._config.listing_timeout):
            self._log.info(f"{service_id} is accessible")
            return True

        self._log.info(f"{service_id} is not responding")
        return False

    def wait_until_available(
        self,
        service_id: str,
        max_attempts: int | None = None,
        interval: float | None = None,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Poll a service's mount until it responds.

        Args:
            service_id: Service to wait for.
            max_attempts: Probes to make (default from config).
            interval: Seconds between probes (default from config).
            cancel: Set to abandon waiting; checked before each probe and
                interrupts the sleep between probes.

        Returns:
            True on the first successful probe, False once attempts are
            exhausted or cancellation is requested.
        """
        attempts = self._config.max_attempts if max_attempts is None else max_attempts
        delay = self._config.interval if interval is None else interval
        cancel = cancel or threading.Event()

        for attempt in range(1, attempts + 1):
            if cancel.is_set():
                self._log.info(f"Stopped waiting for {service_id}: shutdown requested")
                return False

            self._log.debug(f"Attempt {attempt} of {attempts} for {service_id}")
            if self.probe(service_id):
                return True

            if attempt < attempts:
                self._log.info(f"Waiting {delay:.0f} seconds before next {service_id} probe...")
                if cancel.wait(delay):
                    self._log.info(f"Stopped waiting for {service_id}: shutdown requested")
                    return False

        self._log.warning(f"{service_id} not ready after {attempts} attempts")
        return False
