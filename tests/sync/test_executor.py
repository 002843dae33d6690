"""Tests for guarded sync orchestration."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import ANY, patch

import pytest

from drivesync.core.config import DriveSyncConfig, ProbeConfig, ServiceConfig, SyncStrategy
from drivesync.core.errors import StateStoreError, UnknownServiceError
from drivesync.core.types import CircuitState, ErrorKind
from drivesync.reliability import CircuitBreaker, CircuitBreakerStore
from drivesync.sync.executor import SyncExecutor
from drivesync.sync.probe import AvailabilityProbe
from drivesync.sync.runner import ToolRun


class FakeRunner:
    """Returns queued ToolRuns and records every invocation."""

    def __init__(self, *runs: ToolRun) -> None:
        self.runs = list(runs)
        self.calls: list[tuple[list[str], float]] = []

    def __call__(self, command: list[str], timeout: float, cancel: threading.Event | None = None) -> ToolRun:
        self.calls.append((command, timeout))
        return self.runs.pop(0)


@pytest.fixture
def config(tmp_path: Path) -> DriveSyncConfig:
    """Two services with existing mounts and a single-attempt probe."""
    for name in ("alpha", "beta"):
        (tmp_path / name).mkdir()
    return DriveSyncConfig(
        services=(
            ServiceConfig("alpha", tmp_path / "alpha", "alpha-profile"),
            ServiceConfig("beta", tmp_path / "beta", "beta-profile"),
        ),
        sync_hub=tmp_path / "hub",
        state_file=tmp_path / "state.json",
        hub_folders=("Notes",),
        strategy=SyncStrategy(tool="unison", baseline_timeout=100),
        probe=ProbeConfig(max_attempts=1, interval=0),
    )


@pytest.fixture
def exec_breaker(config: DriveSyncConfig, clock) -> CircuitBreaker:
    return CircuitBreaker(CircuitBreakerStore(config.state_file), config.breaker, clock=clock)


def make_executor(config: DriveSyncConfig, breaker: CircuitBreaker, runner: FakeRunner) -> SyncExecutor:
    probe = AvailabilityProbe({s.service_id: s for s in config.services}, config.probe)
    return SyncExecutor(config, breaker, probe, runner=runner)


class TestSyncSuccess:
    """Tests for successful syncs."""

    def test_baseline_success(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should run the baseline once and record a success."""
        runner = FakeRunner(ToolRun(0, "done"))
        executor = make_executor(config, exec_breaker, runner)

        with patch.object(exec_breaker, "record_result", wraps=exec_breaker.record_result) as record:
            result = executor.sync("alpha")

        assert result.success
        assert result.attempts == 1
        assert runner.calls == [(["unison", "-batch", "-ui", "text", "-times", "alpha-profile"], 100)]
        record.assert_called_once_with("alpha", True)

    def test_prepares_hub(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should create the hub skeleton before running the tool."""
        make_executor(config, exec_breaker, FakeRunner(ToolRun(0))).sync("alpha")
        assert (config.sync_hub / "Notes").is_dir()

    def test_retry_success(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should retry conservatively once and record a single success."""
        exec_breaker.record_result("alpha", False, ErrorKind.NETWORK)
        runner = FakeRunner(ToolRun(1, "Connection reset by peer"), ToolRun(0))
        executor = make_executor(config, exec_breaker, runner)

        with patch.object(exec_breaker, "record_result", wraps=exec_breaker.record_result) as record:
            result = executor.sync("alpha")

        assert result.success
        assert result.attempts == 2
        retry_command, retry_timeout = runner.calls[1]
        assert retry_command[-5:] == ["-prefer", "newer", "-retry", "1", "alpha-profile"]
        assert retry_timeout == 200
        record.assert_called_once_with("alpha", True)
        assert exec_breaker.get("alpha").failure_count == 0


class TestSyncFailure:
    """Tests for failed syncs."""

    def test_retry_failure_records_once(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should record exactly one failure with the baseline kind."""
        runner = FakeRunner(ToolRun(1, "Connection refused"), ToolRun(2, "No space left on device"))
        executor = make_executor(config, exec_breaker, runner)

        with patch.object(exec_breaker, "record_result", wraps=exec_breaker.record_result) as record:
            result = executor.sync("alpha")

        assert not result.success
        assert result.attempts == 2
        assert result.error_kind == ErrorKind.NETWORK
        assert result.exit_code == 2
        record.assert_called_once_with("alpha", False, ErrorKind.NETWORK)
        assert exec_breaker.get("alpha").failure_count == 1

    def test_unknown_retry_keeps_baseline_kind(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should keep the baseline kind when the retry is unclassifiable."""
        runner = FakeRunner(ToolRun(1, "Connection refused"), ToolRun(2, "???"))
        result = make_executor(config, exec_breaker, runner).sync("alpha")
        assert result.error_kind == ErrorKind.NETWORK
        assert exec_breaker.get("alpha").last_error_type == ErrorKind.NETWORK

    def test_quota_then_timeout_opens_on_quota(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should count a quota failure as quota even when its retry times out."""
        runner = FakeRunner(
            ToolRun(1, "Quota exceeded"), ToolRun(124, timed_out=True),
            ToolRun(1, "Quota exceeded"), ToolRun(124, timed_out=True),
        )
        executor = make_executor(config, exec_breaker, runner)

        first = executor.sync("alpha")
        assert first.error_kind == ErrorKind.QUOTA
        assert exec_breaker.get("alpha").state == CircuitState.CLOSED

        executor.sync("alpha")
        circuit = exec_breaker.get("alpha")
        assert circuit.state == CircuitState.OPEN
        assert circuit.last_error_type == ErrorKind.QUOTA

    def test_missing_tool_is_configuration(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should classify a missing executable as a configuration error."""
        runner = FakeRunner(ToolRun(127, "command not found"), ToolRun(127, "command not found"))
        result = make_executor(config, exec_breaker, runner).sync("alpha")
        assert result.error_kind == ErrorKind.CONFIGURATION

    def test_runner_oserror_is_contained(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should never let an OSError from the runner escape."""
        def broken(command: list[str], timeout: float, cancel: threading.Event | None = None) -> ToolRun:
            raise OSError("fork failed")

        probe = AvailabilityProbe({s.service_id: s for s in config.services}, config.probe)
        result = SyncExecutor(config, exec_breaker, probe, runner=broken).sync("alpha")

        assert not result.success
        assert result.error_kind == ErrorKind.UNKNOWN
        assert exec_breaker.get("alpha").failure_count == 1

    def test_repeated_failures_open_circuit(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should open after the threshold and then block without running the tool."""
        runs = [ToolRun(1, "Read-only file system"), ToolRun(1, "Read-only file system")]
        runner = FakeRunner(*runs)
        executor = make_executor(config, exec_breaker, runner)

        first = executor.sync("alpha")
        assert first.error_kind == ErrorKind.PERMANENT
        assert exec_breaker.get("alpha").state == CircuitState.OPEN

        blocked = executor.sync("alpha")
        assert blocked.blocked
        assert not blocked.success
        assert len(runner.calls) == 2


class TestSyncGuards:
    """Tests for the breaker and probe guards."""

    def test_blocked_does_not_record(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should not run the tool or record anything when blocked."""
        exec_breaker.record_result("alpha", False, ErrorKind.PERMANENT)
        runner = FakeRunner()
        executor = make_executor(config, exec_breaker, runner)
        before = exec_breaker.get("alpha")

        with patch.object(exec_breaker, "record_result") as record:
            result = executor.sync("alpha")

        assert result.blocked
        assert result.attempts == 0
        assert runner.calls == []
        record.assert_not_called()
        assert exec_breaker.get("alpha") == before

    def test_unavailable_mount_records_network(
        self, config: DriveSyncConfig, exec_breaker: CircuitBreaker
    ) -> None:
        """Should record a network failure without running the tool."""
        config.service("alpha").mount_path.rmdir()
        runner = FakeRunner()

        result = make_executor(config, exec_breaker, runner).sync("alpha")

        assert not result.success
        assert result.error_kind == ErrorKind.NETWORK
        assert runner.calls == []
        assert exec_breaker.get("alpha").last_error_type == ErrorKind.NETWORK

    def test_force_download(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker, tmp_path: Path) -> None:
        """Should request placeholder downloads for flagged services."""
        flagged = DriveSyncConfig(
            services=(ServiceConfig("alpha", tmp_path / "alpha", "alpha", force_download=True),),
            sync_hub=config.sync_hub,
            state_file=config.state_file,
            probe=config.probe,
        )
        with patch("drivesync.sync.executor.request_placeholder_download") as download:
            make_executor(flagged, exec_breaker, FakeRunner(ToolRun(0))).sync("alpha")
        download.assert_called_once_with(tmp_path / "alpha", cancel=ANY)

    def test_unknown_service(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should raise UnknownServiceError for an unconfigured id."""
        with pytest.raises(UnknownServiceError):
            make_executor(config, exec_breaker, FakeRunner()).sync("gamma")


class TestSyncCancellation:
    """Tests for shutdown during a sync."""

    def test_cancelled_before_probe(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should record nothing and run nothing when already cancelled."""
        cancel = threading.Event()
        cancel.set()
        runner = FakeRunner()

        with patch.object(exec_breaker, "record_result") as record:
            result = make_executor(config, exec_breaker, runner).sync("alpha", cancel=cancel)

        assert result.cancelled
        assert runner.calls == []
        record.assert_not_called()

    def test_cancelled_baseline_not_recorded(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should record nothing when the baseline run was interrupted."""
        runner = FakeRunner(ToolRun(-9, cancelled=True))

        with patch.object(exec_breaker, "record_result") as record:
            result = make_executor(config, exec_breaker, runner).sync("alpha")

        assert result.cancelled
        assert len(runner.calls) == 1
        record.assert_not_called()

    def test_no_retry_after_cancel(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should not launch the retry once cancelled, and record the first failure."""
        cancel = threading.Event()

        class CancellingRunner(FakeRunner):
            def __call__(self, command, timeout, cancel_event=None):
                cancel.set()
                return super().__call__(command, timeout, cancel_event)

        runner = CancellingRunner(ToolRun(1, "Connection refused"))
        with patch.object(exec_breaker, "record_result", wraps=exec_breaker.record_result) as record:
            result = make_executor(config, exec_breaker, runner).sync("alpha", cancel=cancel)

        assert result.cancelled
        assert len(runner.calls) == 1
        record.assert_called_once_with("alpha", False, ErrorKind.NETWORK)

    def test_cancelled_retry_records_first_failure(
        self, config: DriveSyncConfig, exec_breaker: CircuitBreaker
    ) -> None:
        """Should record the completed baseline failure when the retry is interrupted."""
        runner = FakeRunner(ToolRun(1, "conflict"), ToolRun(-15, cancelled=True))

        with patch.object(exec_breaker, "record_result", wraps=exec_breaker.record_result) as record:
            result = make_executor(config, exec_breaker, runner).sync("alpha")

        assert result.cancelled
        record.assert_called_once_with("alpha", False, ErrorKind.CONFLICT)

    def test_cancelled_skips_placeholder_download(
        self, config: DriveSyncConfig, exec_breaker: CircuitBreaker, tmp_path: Path
    ) -> None:
        """Should not ask the cloud client for downloads once cancelled."""
        for name in ("a", "b", "c"):
            (tmp_path / "alpha" / f"{name}.icloud").write_text("")
        flagged = DriveSyncConfig(
            services=(ServiceConfig("alpha", tmp_path / "alpha", "alpha", force_download=True),),
            sync_hub=config.sync_hub,
            state_file=config.state_file,
            probe=config.probe,
        )
        cancel = threading.Event()
        cancel.set()

        with patch("drivesync.sync.hub.shutil.which", return_value="/usr/bin/brctl"), \
                patch("drivesync.sync.hub.subprocess.run") as mock_run:
            result = make_executor(flagged, exec_breaker, FakeRunner()).sync("alpha", cancel=cancel)

        assert result.cancelled
        mock_run.assert_not_called()


class TestSyncAll:
    """Tests for SyncExecutor.sync_all."""

    def test_failures_are_independent(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should sync every service even when one is blocked."""
        exec_breaker.record_result("alpha", False, ErrorKind.PERMANENT)

        def runner(command: list[str], timeout: float, cancel: threading.Event | None = None) -> ToolRun:
            return ToolRun(0)

        probe = AvailabilityProbe({s.service_id: s for s in config.services}, config.probe)
        results = SyncExecutor(config, exec_breaker, probe, runner=runner).sync_all()

        assert [r.service_id for r in results] == ["alpha", "beta"]
        assert results[0].blocked
        assert results[1].success

    def test_subset(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should sync only the requested services."""
        results = make_executor(config, exec_breaker, FakeRunner(ToolRun(0))).sync_all(["beta"])
        assert [r.service_id for r in results] == ["beta"]

    def test_unknown_service_rejected_up_front(
        self, config: DriveSyncConfig, exec_breaker: CircuitBreaker
    ) -> None:
        """Should reject unknown ids before syncing anything."""
        runner = FakeRunner()
        with pytest.raises(UnknownServiceError):
            make_executor(config, exec_breaker, runner).sync_all(["alpha", "gamma"])
        assert runner.calls == []

    def test_state_updates_not_blocked_by_running_sync(
        self, config: DriveSyncConfig, exec_breaker: CircuitBreaker
    ) -> None:
        """Should let another service record its outcome while a tool is running."""
        finished = threading.Event()

        def record_beta() -> None:
            exec_breaker.record_result("beta", False, ErrorKind.NETWORK)
            finished.set()

        def runner(command: list[str], timeout: float, cancel: threading.Event | None = None) -> ToolRun:
            other = threading.Thread(target=record_beta)
            other.start()
            other.join(timeout=5)
            return ToolRun(0 if finished.is_set() else 1)

        probe = AvailabilityProbe({s.service_id: s for s in config.services}, config.probe)
        result = SyncExecutor(config, exec_breaker, probe, runner=runner).sync("alpha")

        assert finished.is_set()
        assert result.success
        assert exec_breaker.get("beta").failure_count == 1

    def test_store_error_becomes_failure(self, config: DriveSyncConfig, exec_breaker: CircuitBreaker) -> None:
        """Should report a state store failure as a failed result."""
        executor = make_executor(config, exec_breaker, FakeRunner())
        with patch.object(exec_breaker, "allow", side_effect=StateStoreError("read-only state")):
            results = executor.sync_all(["alpha"])
        assert not results[0].success
        assert "read-only state" in results[0].message
