"""Sync command for DriveSync CLI.

Commands:
- sync: Synchronize the hub with every configured cloud mirror
"""

from __future__ import annotations

import contextlib
import signal
import sys
import threading
from collections.abc import Iterator

import click

from drivesync.cli.runtime import get_runtime
from drivesync.core.errors import UnknownServiceError
from drivesync.core.types import SyncAttemptResult


@contextlib.contextmanager
def shutdown_event() -> Iterator[threading.Event]:
    """Yield an event that is set on SIGINT or SIGTERM.

    Previous handlers are restored on exit. Outside the main thread no
    handlers are installed and the event is only set programmatically.
    """
    stop_event = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield stop_event
        return

    def signal_handler(signum: int, frame: object) -> None:
        click.echo("\nShutdown requested, stopping sync...", err=True)
        stop_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, signal_handler)
    try:
        yield stop_event
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def format_result(result: SyncAttemptResult) -> str:
    """Render one result line."""
    if result.success:
        noun = "attempt" if result.attempts == 1 else "attempts"
        return f"  ✓ {result.service_id}: {result.message} ({result.attempts} {noun}, {result.duration:.1f}s)"
    if result.blocked:
        return f"  ✗ {result.service_id}: blocked by circuit breaker"
    detail = result.message
    if result.error_kind is not None:
        detail += f" [{result.error_kind.value}]"
    if result.exit_code is not None:
        detail += f" (exit code {result.exit_code})"
    return f"  ✗ {result.service_id}: {detail}"


@click.command()
@click.argument("services", nargs=-1)
@click.pass_context
def sync(ctx: click.Context, services: tuple[str, ...]) -> None:
    """Synchronize the local hub with cloud mirrors.

    SERVICES limits the run to the given service ids (default: all).
    Every service is attempted even if another fails; the exit status is
    1 if any service failed or was blocked by its circuit breaker.
    """
    runtime = get_runtime(ctx)

    with shutdown_event() as stop_event:
        try:
            results = runtime.executor.sync_all(services or None, cancel=stop_event)
        except UnknownServiceError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    click.echo("Sync results:")
    for result in results:
        click.echo(format_result(result))

    if not all(result.success for result in results):
        sys.exit(1)
