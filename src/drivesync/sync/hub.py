"""Local sync hub preparation and mount hygiene.

This module provides:
- ensure_sync_hub: Idempotent creation of the hub skeleton
- request_placeholder_download: Ask the OS to fetch cloud-only files
- find_problematic_files: Names that break cross-platform sync
- disk_usage_percent: Usage of the volume holding a path
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)

# Characters rejected by at least one of the mirrored filesystems
PROBLEMATIC_CHARACTERS = frozenset(':"<>|')

PLACEHOLDER_SUFFIX = ".icloud"


def ensure_sync_hub(hub: Path, folders: Iterable[str] = ()) -> list[Path]:
    """Create the hub directory and its skeleton folders if missing.

    Args:
        hub: Hub root directory.
        folders: Folder names to create directly under the hub.

    Returns:
        Directories that were created by this call.
    """
    created: list[Path] = []
    for directory in (hub, *(hub / name for name in folders)):
        if not directory.is_dir():
            logger.info(f"Creating directory: {directory}")
            directory.mkdir(parents=True, exist_ok=True)
            created.append(directory)
    return created


def _scan_placeholders(mount: Path, timeout: float, cancel: threading.Event) -> list[Path] | None:
    """Collect placeholder stubs on a daemon thread, giving up after timeout.

    Returns:
        The stubs found, or None if the scan failed, hung, or was cancelled.
    """
    outcome: dict[str, list[Path]] = {}

    def _scan() -> None:
        found: list[Path] = []
        try:
            for path in mount.rglob(f"*{PLACEHOLDER_SUFFIX}"):
                if cancel.is_set():
                    return
                found.append(path)
        except OSError as e:
            logger.warning(f"Could not scan {mount} for placeholders: {e}")
            return
        outcome["found"] = found

    worker = threading.Thread(target=_scan, name=f"placeholders-{mount.name}", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        logger.warning(f"Placeholder scan of {mount} did not complete within {timeout:.0f}s")
        return None
    return outcome.get("found")


def request_placeholder_download(
    mount: Path,
    timeout: float = 60.0,
    scan_timeout: float = 30.0,
    cancel: threading.Event | None = None,
) -> int:
    """Ask the cloud client to download cloud-only placeholder files.

    Uses ``brctl download`` when available (macOS iCloud). Otherwise the
    placeholder stubs are touched, which makes most clients fetch them.
    Failures are logged and ignored.

    Args:
        mount: Cloud mount point.
        timeout: Seconds allowed for each brctl call.
        scan_timeout: Seconds allowed for finding the placeholder stubs.
        cancel: When set, no further downloads are requested.

    Returns:
        Number of placeholder files found.
    """
    cancel = cancel or threading.Event()
    if cancel.is_set():
        return 0
    if not mount.is_dir():
        logger.info(f"Skipping placeholder download, path not found: {mount}")
        return 0

    placeholders = _scan_placeholders(mount, scan_timeout, cancel)
    if placeholders is None:
        return 0

    brctl = shutil.which("brctl")
    if brctl:
        logger.info("Using brctl to force download...")
        for target in (mount, *placeholders):
            if cancel.is_set():
                logger.info("Placeholder download stopped: shutdown requested")
                break
            try:
                subprocess.run(
                    [brctl, "download", str(target)],
                    capture_output=True,
                    check=False,
                    timeout=timeout,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.debug(f"brctl download {target} failed: {e}")
    else:
        logger.info("brctl not available, touching placeholder files")
        for placeholder in placeholders:
            if cancel.is_set():
                logger.info("Placeholder download stopped: shutdown requested")
                break
            try:
                placeholder.touch()
            except OSError as e:
                logger.debug(f"Could not touch {placeholder}: {e}")

    logger.info(f"Placeholder download requested for {len(placeholders)} files")
    return len(placeholders)


def find_problematic_files(root: Path, limit: int = 5) -> list[Path]:
    """Find files whose names contain characters other mirrors reject.

    Args:
        root: Directory to scan recursively.
        limit: Maximum number of paths to return.

    Returns:
        Up to ``limit`` offending paths.
    """
    found: list[Path] = []
    if not root.is_dir():
        return found
    try:
        for path in root.rglob("*"):
            if PROBLEMATIC_CHARACTERS.intersection(path.name):
                found.append(path)
                if len(found) >= limit:
                    break
    except OSError as e:
        logger.warning(f"Scan of {root} stopped early: {e}")
    return found


def disk_usage_percent(path: Path) -> float:
    """Get the used percentage of the volume holding path.

    The nearest existing ancestor is used when path does not exist yet.
    """
    target = path
    while not target.exists() and target != target.parent:
        target = target.parent
    usage = shutil.disk_usage(target)
    return usage.used / usage.total * 100 if usage.total else 0.0
