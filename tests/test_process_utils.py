"""
Tests for ProcessWaiter.

Tests cover:
- Processes that do not exist or already exited
- Graceful exits within the timeout
- Force termination after the timeout
- Refused termination
"""

from __future__ import annotations

import subprocess
import sys
from unittest.mock import MagicMock, patch

import psutil
import pytest

from selfswap.errors import CannotKillProcessError
from selfswap.process_utils import ProcessWaiter


def _mock_process(**kwargs: object) -> MagicMock:
    process = MagicMock(spec=psutil.Process)
    for name, value in kwargs.items():
        setattr(process, name, value)
    return process


class TestProcessWaiter:
    """Tests for ProcessWaiter.wait with a mocked psutil."""

    def test_missing_process_is_not_an_error(self) -> None:
        """Test that an unknown pid counts as already exited."""
        with patch(
            "selfswap.process_utils.psutil.Process",
            side_effect=psutil.NoSuchProcess(4242),
        ):
            assert ProcessWaiter().wait(4242) is False

    def test_graceful_exit(self) -> None:
        """Test that a process exiting in time is not killed."""
        process = _mock_process()
        process.wait.return_value = 0

        with patch("selfswap.process_utils.psutil.Process", return_value=process):
            assert ProcessWaiter().wait(4242, timeout=2.0) is False

        process.wait.assert_called_once_with(timeout=2.0)
        process.kill.assert_not_called()

    def test_default_timeout_used(self) -> None:
        """Test that the waiter's exit timeout is the default."""
        process = _mock_process()

        with patch("selfswap.process_utils.psutil.Process", return_value=process):
            ProcessWaiter(exit_timeout=3.0).wait(4242)

        process.wait.assert_called_once_with(timeout=3.0)

    def test_process_vanishes_during_wait(self) -> None:
        """Test that a process disappearing mid-wait is swallowed."""
        process = _mock_process()
        process.wait.side_effect = psutil.NoSuchProcess(4242)

        with patch("selfswap.process_utils.psutil.Process", return_value=process):
            assert ProcessWaiter().wait(4242) is False

    def test_access_denied_during_wait(self) -> None:
        """Test that a refused wait is swallowed and nothing is killed."""
        process = _mock_process()
        process.wait.side_effect = psutil.AccessDenied(4242)

        with patch("selfswap.process_utils.psutil.Process", return_value=process):
            assert ProcessWaiter(exit_timeout=0.01).wait(4242) is False

        process.kill.assert_not_called()

    def test_access_denied_during_lookup(self) -> None:
        """Test that a refused lookup is swallowed."""
        with patch(
            "selfswap.process_utils.psutil.Process",
            side_effect=psutil.AccessDenied(4242),
        ):
            assert ProcessWaiter().wait(4242) is False

    def test_kill_after_timeout(self) -> None:
        """Test that a process still running after the timeout is killed."""
        process = _mock_process()
        process.wait.side_effect = [psutil.TimeoutExpired(10.0, 4242), 0]

        with patch("selfswap.process_utils.psutil.Process", return_value=process):
            killed = ProcessWaiter(exit_timeout=10.0, kill_timeout=1.0).wait(4242)

        assert killed is True
        process.kill.assert_called_once_with()
        assert process.wait.call_args_list[1].kwargs == {"timeout": 1.0}

    def test_killed_process_lingering_is_tolerated(self) -> None:
        """Test that a process surviving the kill timeout only warns."""
        process = _mock_process()
        process.wait.side_effect = [
            psutil.TimeoutExpired(10.0, 4242),
            psutil.TimeoutExpired(5.0, 4242),
        ]

        with patch("selfswap.process_utils.psutil.Process", return_value=process):
            assert ProcessWaiter().wait(4242) is True

    def test_process_exits_before_kill(self) -> None:
        """Test that a process exiting right before the kill is not an error."""
        process = _mock_process()
        process.wait.side_effect = psutil.TimeoutExpired(10.0, 4242)
        process.kill.side_effect = psutil.NoSuchProcess(4242)

        with patch("selfswap.process_utils.psutil.Process", return_value=process):
            ProcessWaiter().wait(4242)

    def test_kill_refused(self) -> None:
        """Test that a refused kill raises CannotKillProcessError."""
        process = _mock_process()
        process.wait.side_effect = psutil.TimeoutExpired(10.0, 4242)
        denied = psutil.AccessDenied(4242)
        process.kill.side_effect = denied

        with patch(
            "selfswap.process_utils.psutil.Process", return_value=process
        ), pytest.raises(CannotKillProcessError) as exc_info:
            ProcessWaiter().wait(4242)

        assert exc_info.value.__cause__ is denied
        assert exc_info.value.details["pid"] == 4242


@pytest.mark.integration
class TestProcessWaiterIntegration:
    """Tests for ProcessWaiter against real processes."""

    def test_finished_process(self) -> None:
        """Test waiting on a process that already exited and was reaped."""
        proc = subprocess.Popen([sys.executable, "-c", "pass"])
        proc.wait(timeout=30)

        assert ProcessWaiter(exit_timeout=1.0).wait(proc.pid) is False

    def test_process_exiting_in_time(self) -> None:
        """Test waiting on a process that exits on its own."""
        proc = subprocess.Popen(
            [sys.executable, "-c", "import time; time.sleep(0.2)"]
        )

        assert ProcessWaiter(exit_timeout=30.0).wait(proc.pid) is False
        assert not psutil.pid_exists(proc.pid) or proc.poll() is not None

    def test_unresponsive_process_is_killed(self) -> None:
        """Test that a process ignoring the timeout is force-terminated."""
        proc = subprocess.Popen(
            [sys.executable, "-c", "import time; time.sleep(60)"]
        )
        try:
            killed = ProcessWaiter(exit_timeout=0.5, kill_timeout=10.0).wait(proc.pid)

            assert killed is True
            assert proc.wait(timeout=10) is not None
        finally:
            if proc.poll() is None:
                proc.kill()
