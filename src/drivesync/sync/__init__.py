"""Sync orchestration against cloud mirrors.

Architecture:
    SyncExecutor → AvailabilityProbe → run_tool → CircuitBreaker

Components:
- **AvailabilityProbe**: Bounded, cancellable mount checks
- **run_tool**: External sync tool invocation with timeout and cancellation
- **SyncExecutor**: Guarded sync with a single conservative retry
- **hub helpers**: Hub skeleton, placeholder download, mount hygiene
"""

from drivesync.sync.executor import SyncExecutor
from drivesync.sync.hub import (
    disk_usage_percent,
    ensure_sync_hub,
    find_problematic_files,
    request_placeholder_download,
)
from drivesync.sync.probe import AvailabilityProbe, list_directory
from drivesync.sync.runner import ToolRun, run_tool

__all__ = [
    "AvailabilityProbe",
    "SyncExecutor",
    "ToolRun",
    "disk_usage_percent",
    "ensure_sync_hub",
    "find_problematic_files",
    "list_directory",
    "request_placeholder_download",
    "run_tool",
]
