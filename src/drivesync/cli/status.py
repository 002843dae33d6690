"""Circuit breaker commands for DriveSync CLI.

Commands:
- status: Show the circuit breaker status report
- reset-circuit-breakers: Close one or every circuit breaker
"""

from __future__ import annotations

import json
import sys

import click

from drivesync.cli.runtime import get_runtime


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output the report as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show circuit breaker state for every known service."""
    runtime = get_runtime(ctx)

    if as_json:
        click.echo(json.dumps(runtime.reporter.as_dict(), indent=2))
    else:
        click.echo(runtime.reporter.report())


@click.command("reset-circuit-breakers")
@click.argument("service", required=False)
@click.pass_context
def reset_circuit_breakers(ctx: click.Context, service: str | None) -> None:
    """Reset circuit breakers to closed.

    SERVICE resets a single service; without it every known service is reset.
    """
    runtime = get_runtime(ctx)

    if service is None:
        reset = runtime.breaker.reset_all(runtime.config.service_ids)
        if reset:
            click.echo(f"Reset circuit breakers: {', '.join(reset)}")
        else:
            click.echo("No circuit breakers to reset.")
    else:
        known = set(runtime.config.service_ids) | set(runtime.store.service_ids())
        if service not in known:
            click.echo(f"Error: Unknown service: {service}", err=True)
            sys.exit(1)
        runtime.breaker.reset(service)
        click.echo(f"Reset circuit breaker: {service}")

    click.echo()
    click.echo(runtime.reporter.report())
