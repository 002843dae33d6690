"""External sync tool invocation.

This module provides:
- ToolRun: Captured outcome of one tool invocation
- run_tool: Run a command with a hard timeout and cooperative cancellation
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Exit code reported for runs stopped by our own timeout, matching timeout(1)
TIMEOUT_EXIT_CODE = 124

# Shell conventions for a tool that cannot be found or executed
NOT_FOUND_EXIT_CODE = 127
NOT_EXECUTABLE_EXIT_CODE = 126

# How often a running tool is checked for cancellation
CANCEL_POLL_INTERVAL = 0.5


@dataclass
class ToolRun:
    """Outcome of one tool invocation.

    Attributes:
        exit_code: Process exit code (None if the process could not start
            for a reason other than a missing or non-executable tool).
        output: Combined stdout and stderr.
        duration: Seconds the invocation took.
        timed_out: True if the run was killed by the timeout.
        cancelled: True if the run was killed by a cancellation request.
    """

    exit_code: int | None
    output: str = ""
    duration: float = 0.0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.cancelled


def _stop(proc: subprocess.Popen[str]) -> str:
    """Kill a running process and collect whatever output remains."""
    proc.kill()
    try:
        out, _ = proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        return ""
    return out or ""


def run_tool(
    command: list[str],
    timeout: float,
    cancel: threading.Event | None = None,
) -> ToolRun:
    """Run the sync tool and capture its output.

    Never raises for tool failures: spawn errors and timeouts are returned
    as a ToolRun with the conventional exit code.

    Args:
        command: Command line to execute.
        timeout: Hard limit in seconds.
        cancel: When set, the running process is killed promptly.

    Returns:
        The captured outcome.
    """
    cancel = cancel or threading.Event()
    start = time.monotonic()
    logger.debug(f"Running: {' '.join(command)} (timeout {timeout:.0f}s)")

    try:
        proc = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
        )
    except FileNotFoundError as e:
        return ToolRun(NOT_FOUND_EXIT_CODE, f"command not found: {e}", time.monotonic() - start)
    except PermissionError as e:
        return ToolRun(NOT_EXECUTABLE_EXIT_CODE, f"permission denied: {e}", time.monotonic() - start)
    except OSError as e:
        return ToolRun(None, str(e), time.monotonic() - start)

    deadline = start + timeout
    chunks: list[str] = []
    while True:
        remaining = deadline - time.monotonic()
        try:
            out, _ = proc.communicate(timeout=max(0.0, min(CANCEL_POLL_INTERVAL, remaining)))
            chunks.append(out or "")
            break
        except subprocess.TimeoutExpired:
            if cancel.is_set():
                chunks.append(_stop(proc))
                logger.info(f"Stopped {command[0]}: shutdown requested")
                return ToolRun(proc.returncode, "".join(chunks), time.monotonic() - start, cancelled=True)
            if time.monotonic() >= deadline:
                chunks.append(_stop(proc))
                logger.warning(f"{command[0]} timed out after {timeout:.0f}s")
                return ToolRun(TIMEOUT_EXIT_CODE, "".join(chunks), time.monotonic() - start, timed_out=True)

    return ToolRun(proc.returncode, "".join(chunks), time.monotonic() - start)
