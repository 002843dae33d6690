"""Classification of failed sync tool runs.

The classifier maps a process exit code and its captured output to an
ErrorKind. Rules are evaluated in order and the first match wins, because
tool output frequently carries more than one signature (a quota failure
is often wrapped in a "permission denied" from the OS layer).
"""

from __future__ import annotations

import re

from drivesync.core.types import ErrorKind

# Exit codes of a run that was timed out or killed (timeout(1), SIGKILL, SIGTERM)
TIMEOUT_EXIT_CODES = frozenset({124, 137, 143})

# Shell codes for a missing or non-executable tool
MISSING_TOOL_EXIT_CODES = frozenset({126, 127})

# Unison: some items could not be synchronized
PARTIAL_SYNC_EXIT_CODE = 3

AUTHENTICATION_PATTERNS = (
    r"permission denied",
    r"operation not permitted",
    r"unauthori[sz]ed",
    r"authenticat",
    r"\bauth\b",
    r"credential",
    r"token (?:has )?expired",
    r"login required",
    r"access denied",
)

CONFLICT_PATTERNS = (
    r"conflict",
    r"\blocked\b",
    r"lock file",
    r"deadlock",
    r"resource busy",
)

QUOTA_PATTERNS = (
    r"quota",
    r"no space left",
    r"disk full",
    r"storage limit",
    r"limit exceeded",
    r"insufficient (?:disk )?space",
)

NETWORK_PATTERNS = (
    r"connection refused",
    r"network is unreachable",
    r"connection reset",
    r"host is down",
    r"timed out",
    r"no route to host",
)

CONFIGURATION_PATTERNS = (
    r"profile .*(?:not found|does not exist)",
    r"unknown (?:option|preference)",
    r"usage:",
    r"bad root",
    r"command not found",
)

PERMANENT_PATTERNS = (
    r"read-only file system",
    r"invalid argument",
    r"operation not supported",
    r"file name too long",
)


def _compile(patterns: tuple[str, ...]) -> re.Pattern[str]:
    return re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)


_AUTHENTICATION = _compile(AUTHENTICATION_PATTERNS)
_CONFLICT = _compile(CONFLICT_PATTERNS)
_QUOTA = _compile(QUOTA_PATTERNS)
_NETWORK = _compile(NETWORK_PATTERNS)
_CONFIGURATION = _compile(CONFIGURATION_PATTERNS)
_PERMANENT = _compile(PERMANENT_PATTERNS)


def is_timeout_exit(exit_code: int) -> bool:
    """Check whether an exit code means the run was timed out or killed.

    Negative codes are reported by subprocess for children killed by a signal.
    """
    return exit_code in TIMEOUT_EXIT_CODES or exit_code < 0


def classify(exit_code: int | None, output: str = "") -> ErrorKind:
    """Classify a failed sync tool run.

    Args:
        exit_code: Process exit code (None if the process never ran).
        output: Combined stdout and stderr text.

    Returns:
        The ErrorKind of the first matching rule, UNKNOWN if none matches.
    """
    text = output or ""
    code = 0 if exit_code is None else exit_code

    if is_timeout_exit(code):
        return ErrorKind.TRANSIENT
    if code == 1 and _AUTHENTICATION.search(text):
        return ErrorKind.AUTHENTICATION
    if _CONFLICT.search(text):
        return ErrorKind.CONFLICT
    if _QUOTA.search(text):
        return ErrorKind.QUOTA
    if _NETWORK.search(text):
        return ErrorKind.NETWORK
    if code in MISSING_TOOL_EXIT_CODES or _CONFIGURATION.search(text):
        return ErrorKind.CONFIGURATION
    if _PERMANENT.search(text):
        return ErrorKind.PERMANENT
    if code == PARTIAL_SYNC_EXIT_CODE:
        return ErrorKind.PARTIAL_SYNC
    return ErrorKind.UNKNOWN

