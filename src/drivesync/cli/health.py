"""Health command for DriveSync CLI.

Commands:
- health: Probe every cloud mount and inspect the hub volume
"""

from __future__ import annotations

import sys

import click

from drivesync.cli.runtime import get_runtime
from drivesync.sync.hub import disk_usage_percent, find_problematic_files

# Warn when the hub volume is fuller than this
DISK_SPACE_THRESHOLD = 85.0


@click.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check that cloud mounts are reachable.

    Probes each mount once, lists file names other mirrors reject, and
    reports disk usage of the hub volume. Breaker state is not changed.
    Exits with status 1 if any mount is unreachable.
    """
    runtime = get_runtime(ctx)
    config = runtime.config
    unreachable: list[str] = []

    click.echo("Cloud mounts:")
    for service in config.services:
        if runtime.probe.probe(service.service_id):
            click.echo(f"  ✓ {service.service_id}: accessible ({service.mount_path})")
        else:
            click.echo(f"  ✗ {service.service_id}: not accessible ({service.mount_path})")
            unreachable.append(service.service_id)
            continue

        problematic = find_problematic_files(service.mount_path)
        if problematic:
            click.echo(f"    Files with problematic characters in {service.service_id}:")
            for path in problematic:
                click.echo(f"      - {path.name}")

    try:
        usage = disk_usage_percent(config.sync_hub)
    except OSError as e:
        click.echo(f"Disk usage: unavailable ({e})")
    else:
        warning = " - WARNING: low disk space" if usage > DISK_SPACE_THRESHOLD else ""
        click.echo(f"Disk usage: {usage:.0f}% ({config.sync_hub}){warning}")

    if unreachable:
        sys.exit(1)
