"""Command-line interface for DriveSync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- sync: Synchronize the local hub with cloud mirrors
- health: Check that cloud mounts are reachable
- status: Show the circuit breaker status report
- reset-circuit-breakers: Close one or every circuit breaker
"""

from __future__ import annotations

from pathlib import Path

import click

from drivesync.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    load_settings,
    save_config,
)
from drivesync.cli.health import health
from drivesync.cli.runtime import CliContext, setup_logging
from drivesync.cli.status import reset_circuit_breakers, status
from drivesync.cli.sync import sync


@click.group()
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Configuration directory (default: ~/.drivesync).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.version_option()
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None, verbose: bool) -> None:
    """DriveSync - Reliable local hub sync with cloud mirrors."""
    config_dir = config_dir or get_config_dir()
    ctx.obj = CliContext(config_dir=config_dir, verbose=verbose)
    setup_logging(config_dir, verbose)


# Sync commands
cli.add_command(sync)
cli.add_command(health)

# Circuit breaker commands
cli.add_command(status)
cli.add_command(reset_circuit_breakers)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "load_config",
    "load_settings",
    "save_config",
]
