"""Tests for cloud mount availability checks."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from drivesync.core.config import ProbeConfig, ServiceConfig
from drivesync.core.errors import UnknownServiceError
from drivesync.sync.probe import AvailabilityProbe, list_directory


@pytest.fixture
def mount(tmp_path: Path) -> Path:
    """Create a mount directory with one file."""
    path = tmp_path / "icloud"
    path.mkdir()
    (path / "notes.md").write_text("hello")
    return path


def make_probe(mount: Path, **config: float) -> AvailabilityProbe:
    return AvailabilityProbe(
        {"icloud": ServiceConfig("icloud", mount, "icloud")},
        ProbeConfig(**config),
    )


class TestListDirectory:
    """Tests for list_directory."""

    def test_lists_directory(self, mount: Path) -> None:
        """Should succeed for a readable directory."""
        assert list_directory(mount, timeout=5) is True

    def test_missing_directory(self, tmp_path: Path) -> None:
        """Should fail for a missing directory."""
        assert list_directory(tmp_path / "missing", timeout=5) is False

    def test_hanging_listing(self, mount: Path) -> None:
        """Should give up when the listing does not finish in time."""
        release = threading.Event()

        def hang(path: Path) -> None:
            release.wait(5)
            raise OSError("stale mount")

        try:
            with patch("drivesync.sync.probe.os.scandir", side_effect=hang):
                start = time.monotonic()
                assert list_directory(mount, timeout=0.2) is False
                assert time.monotonic() - start < 2
        finally:
            release.set()


class TestProbe:
    """Tests for AvailabilityProbe.probe."""

    def test_available(self, mount: Path) -> None:
        """Should report an existing, listable mount as available."""
        assert make_probe(mount).probe("icloud") is True

    def test_missing_mount(self, tmp_path: Path) -> None:
        """Should report a missing mount as unavailable."""
        assert make_probe(tmp_path / "missing").probe("icloud") is False

    def test_file_instead_of_directory(self, tmp_path: Path) -> None:
        """Should report a plain file as unavailable."""
        path = tmp_path / "icloud"
        path.write_text("not a mount")
        assert make_probe(path).probe("icloud") is False

    def test_unknown_service(self, mount: Path) -> None:
        """Should raise UnknownServiceError for an unconfigured id."""
        with pytest.raises(UnknownServiceError):
            make_probe(mount).probe("dropbox")


class TestWaitUntilAvailable:
    """Tests for AvailabilityProbe.wait_until_available."""

    def test_returns_on_first_success(self, mount: Path) -> None:
        """Should stop polling after the first successful probe."""
        probe = make_probe(mount)
        with patch.object(probe, "probe", side_effect=[False, False, True]) as mock_probe:
            assert probe.wait_until_available("icloud", max_attempts=5, interval=0) is True
        assert mock_probe.call_count == 3

    def test_exhausts_attempts(self, tmp_path: Path) -> None:
        """Should give up after max_attempts probes."""
        probe = make_probe(tmp_path / "missing")
        with patch.object(probe, "probe", return_value=False) as mock_probe:
            assert probe.wait_until_available("icloud", max_attempts=3, interval=0) is False
        assert mock_probe.call_count == 3

    def test_uses_config_defaults(self, tmp_path: Path) -> None:
        """Should use attempts and interval from the config."""
        probe = make_probe(tmp_path / "missing", max_attempts=2, interval=0)
        with patch.object(probe, "probe", return_value=False) as mock_probe:
            assert probe.wait_until_available("icloud") is False
        assert mock_probe.call_count == 2

    def test_waits_between_attempts(self, tmp_path: Path) -> None:
        """Should sleep between probes but not after the last one."""
        probe = make_probe(tmp_path / "missing")
        cancel = threading.Event()
        with patch.object(cancel, "wait", return_value=False) as mock_wait:
            probe.wait_until_available("icloud", max_attempts=3, interval=5, cancel=cancel)
        assert [c.args for c in mock_wait.call_args_list] == [(5,), (5,)]

    def test_cancelled_before_start(self, mount: Path) -> None:
        """Should not probe when already cancelled."""
        probe = make_probe(mount)
        cancel = threading.Event()
        cancel.set()
        with patch.object(probe, "probe") as mock_probe:
            assert probe.wait_until_available("icloud", cancel=cancel) is False
        mock_probe.assert_not_called()

    def test_cancel_interrupts_sleep(self, tmp_path: Path) -> None:
        """Should return promptly when cancelled during the interval."""
        probe = make_probe(tmp_path / "missing")
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            start = time.monotonic()
            result = probe.wait_until_available("icloud", max_attempts=10, interval=30, cancel=cancel)
            elapsed = time.monotonic() - start
        finally:
            timer.cancel()

        assert result is False
        assert elapsed < 5
