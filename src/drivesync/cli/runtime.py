"""Wiring of the reliability engine for CLI commands.

This module provides:
- setup_logging: Console and file handlers on the drivesync logger
- Runtime: The configured store, breaker, probe, executor, and reporter
- CliContext / get_runtime: Per-invocation state shared by commands
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import click

from drivesync.cli.config import load_settings
from drivesync.core.config import DriveSyncConfig
from drivesync.core.errors import ConfigError
from drivesync.notifications import notify_state_change
from drivesync.reliability import CircuitBreaker, CircuitBreakerStore, HealthReporter
from drivesync.sync import AvailabilityProbe, SyncExecutor

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "drivesync.log"


def setup_logging(config_dir: Path, verbose: bool = False) -> None:
    """Configure logging to output to both stderr and a log file.

    Handlers from a previous call are replaced, so commands can be invoked
    repeatedly in one process.

    Args:
        config_dir: Directory holding the log file.
        verbose: Log at DEBUG instead of INFO.
    """
    formatter = logging.Formatter(LOG_FORMAT)
    root_logger = logging.getLogger("drivesync")
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root_logger.addHandler(stderr_handler)

    try:
        config_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config_dir / LOG_FILE_NAME, encoding="utf-8")
    except OSError as e:
        root_logger.warning(f"File logging disabled: {e}")
        return
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


@dataclass
class Runtime:
    """Engine components built from one configuration."""

    config: DriveSyncConfig
    store: CircuitBreakerStore
    breaker: CircuitBreaker
    probe: AvailabilityProbe
    executor: SyncExecutor
    reporter: HealthReporter

    @classmethod
    def create(cls, config: DriveSyncConfig) -> Runtime:
        """Build the engine for a configuration."""
        store = CircuitBreakerStore(config.state_file)
        breaker = CircuitBreaker(
            store,
            config.breaker,
            on_state_change=notify_state_change if config.notifications else None,
        )
        probe = AvailabilityProbe({s.service_id: s for s in config.services}, config.probe)
        executor = SyncExecutor(config, breaker, probe)
        reporter = HealthReporter(store, config.service_ids)
        return cls(config, store, breaker, probe, executor, reporter)


@dataclass
class CliContext:
    """Options of the top-level command group."""

    config_dir: Path
    verbose: bool = False


def get_runtime(ctx: click.Context) -> Runtime:
    """Load configuration and build the engine for a command.

    Exits with status 1 if the configuration is invalid.
    """
    cli_ctx: CliContext = ctx.find_object(CliContext)
    try:
        config = load_settings(cli_ctx.config_dir)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    return Runtime.create(config)
