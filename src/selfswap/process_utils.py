"""
Blocking process handling for the selfswap updater.

The application that launched the updater usually still holds file handles
in the live installation. ProcessWaiter gives it a bounded amount of time to
exit on its own and kills it afterwards.

The wait is race tolerant: the process may already be gone when we look it
up, or vanish between any two calls. Only a refused kill is an error.
"""

from __future__ import annotations

import psutil

from selfswap.errors import CannotKillProcessError
from selfswap.logging import get_logger

logger = get_logger(__name__)

DEFAULT_EXIT_TIMEOUT_SECONDS = 10.0
DEFAULT_KILL_TIMEOUT_SECONDS = 5.0


class ProcessWaiter:
    """
    Waits for a process to exit, force-terminating it after a timeout.

    Example:
        >>> waiter = ProcessWaiter(exit_timeout=10.0)
        >>> killed = waiter.wait(4242)
    """

    def __init__(
        self,
        exit_timeout: float = DEFAULT_EXIT_TIMEOUT_SECONDS,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize the ProcessWaiter.

        Args:
            exit_timeout: Seconds to wait for a graceful exit.
            kill_timeout: Seconds to wait for the process to go away after
                it was killed.
        """
        self.exit_timeout = exit_timeout
        self.kill_timeout = kill_timeout

    def wait(self, process_id: int, timeout: float | None = None) -> bool:
        """
        Wait for a process to exit.

        Args:
            process_id: Process ID of the process blocking the update.
            timeout: Seconds to wait for a graceful exit. Defaults to
                the waiter's exit_timeout.

        Returns:
            True if the process had to be force-terminated, False if it
            exited on its own or did not exist.

        Raises:
            CannotKillProcessError: If the process could not be killed.
        """
        if timeout is None:
            timeout = self.exit_timeout

        logger.info(
            "Waiting for launcher to close...",
            extra={"pid": process_id, "timeout_seconds": timeout},
        )

        try:
            process = psutil.Process(process_id)
        except psutil.NoSuchProcess:
            logger.info("Launcher closed; applying update...")
            return False
        except psutil.Error as e:
            logger.debug(f"Cannot look up process {process_id}: {e}")
            return False

        try:
            process.wait(timeout=timeout)
            logger.info("Launcher closed; applying update...")
            return False
        except psutil.TimeoutExpired:
            pass
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            logger.info("Launcher closed; applying update...")
            return False
        except psutil.Error as e:
            # TimeoutExpired is a psutil.Error too; it is handled above
            logger.debug(f"Cannot wait for process {process_id}: {e}")
            return False

        logger.info(
            "Launcher hasn't closed gracefully; killing launcher process...",
            extra={"pid": process_id},
        )
        self._kill(process, process_id)
        logger.info("Launcher closed; applying update...")
        return True

    def _kill(self, process: psutil.Process, process_id: int) -> None:
        """Kill a process and wait briefly for it to disappear."""
        try:
            process.kill()
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            # Exited between the timeout and the kill
            return
        except (psutil.AccessDenied, OSError) as e:
            raise CannotKillProcessError(
                "Unable to kill launcher process",
                details={"pid": process_id, "error": str(e)},
            ) from e

        try:
            process.wait(timeout=self.kill_timeout)
        except psutil.TimeoutExpired:
            logger.warning(
                f"Process {process_id} still running {self.kill_timeout}s after kill",
                extra={"pid": process_id},
            )
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            pass
