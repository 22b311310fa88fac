"""
Update orchestration for the selfswap updater.

UpdateOrchestrator sequences one update run:
1. Validate the paths and the process id (no side effects on failure)
2. Wait for the blocking process to exit (ProcessWaiter)
3. Swap the directories (DirectoryTransaction)
4. Map whatever went wrong to an UpdateOutcome
5. Relaunch the application with the outcome, whatever it is

Components raise UpdateError subclasses; this is the only place they are
caught. The run always ends in an UpdateResult whose ``outcome`` is the
discriminant the caller (and the relaunched application) acts on.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from enum import IntEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from selfswap.config import AppConfig
from selfswap.errors import InvalidArgumentError, RelaunchError, UpdateError
from selfswap.launcher import relaunch, resolve_executable
from selfswap.logging import get_logger
from selfswap.process_utils import ProcessWaiter
from selfswap.updates.state_machine import DirectoryTransaction

logger = get_logger(__name__)


class UpdateOutcome(IntEnum):
    """Outcome code of an update run, passed to the relaunched application."""

    SUCCESS = 0
    INVALID_ARGUMENTS = 1
    KILL_FAILURE = 2
    DELETE_PERMISSION_FAILURE = 3
    MOVE_PERMISSION_FAILURE = 4
    DIRECTORY_MISSING_FAILURE = 5
    UNHANDLED_FAILURE = 6


# Error codes with a dedicated outcome; everything else is UNHANDLED_FAILURE
_OUTCOME_BY_ERROR_CODE: dict[str, UpdateOutcome] = {
    "invalid_argument": UpdateOutcome.INVALID_ARGUMENTS,
    "cannot_kill_process": UpdateOutcome.KILL_FAILURE,
    "insufficient_delete_permissions": UpdateOutcome.DELETE_PERMISSION_FAILURE,
    "insufficient_move_permissions": UpdateOutcome.MOVE_PERMISSION_FAILURE,
    "move_directory_missing": UpdateOutcome.DIRECTORY_MISSING_FAILURE,
}


def outcome_for_error(error: BaseException) -> UpdateOutcome:
    """Map an error raised during an update run to its outcome."""
    if isinstance(error, UpdateError):
        return _OUTCOME_BY_ERROR_CODE.get(
            error.error_code, UpdateOutcome.UNHANDLED_FAILURE
        )
    return UpdateOutcome.UNHANDLED_FAILURE


class UpdateResult(BaseModel):
    """Result of one update run."""

    outcome: UpdateOutcome = Field(
        default=UpdateOutcome.SUCCESS,
        description="Outcome code of the run",
    )
    error_code: str | None = Field(
        default=None,
        description="Error code of the failure, if any",
    )
    message: str | None = Field(
        default=None,
        description="Human-readable description of the failure, if any",
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured details of the failure",
    )
    transaction_state: str | None = Field(
        default=None,
        description="Final state of the directory transaction, if it ran",
    )
    process_killed: bool = Field(
        default=False,
        description="Whether the blocking process had to be force-terminated",
    )
    relaunched: bool = Field(
        default=False,
        description="Whether the application was started again",
    )
    relaunch_error: str | None = Field(
        default=None,
        description="Why the relaunch failed, if it did",
    )
    log_file: str | None = Field(
        default=None,
        description="Application log file of the run",
    )

    @property
    def succeeded(self) -> bool:
        """Whether the update itself succeeded."""
        return self.outcome == UpdateOutcome.SUCCESS


class UpdateOrchestrator:
    """
    Runs one complete update: wait, swap, report, relaunch.

    Attributes:
        config: Application configuration.
        waiter: ProcessWaiter used for the blocking process.
        transaction: DirectoryTransaction used for the swap.
        log_file: Application log file handed to the relaunched application.

    Example:
        >>> orchestrator = UpdateOrchestrator(log_file=Path("/tmp/update.log"))
        >>> result = orchestrator.run("/app/new", "/app/live", 4242)
        >>> result.outcome
        <UpdateOutcome.SUCCESS: 0>
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        waiter: ProcessWaiter | None = None,
        transaction: DirectoryTransaction | None = None,
        log_file: Path | None = None,
    ) -> None:
        """
        Initialize the UpdateOrchestrator.

        Args:
            config: Application configuration (defaults when None).
            waiter: ProcessWaiter to use. Built from config when None.
            transaction: DirectoryTransaction to use. Built from config when None.
            log_file: Application log file of this run.
        """
        self.config = config or AppConfig()
        self.waiter = waiter or ProcessWaiter(
            exit_timeout=self.config.process.exit_timeout_seconds,
            kill_timeout=self.config.process.kill_timeout_seconds,
        )
        self.transaction = transaction or DirectoryTransaction(
            backup_suffix=self.config.transaction.backup_suffix,
            state_file=self.config.transaction.state_file or None,
        )
        self.log_file = log_file

    @staticmethod
    def validate(
        install_path: Path | str | None,
        live_path: Path | str | None,
        process_id: int | None,
    ) -> tuple[Path, Path]:
        """
        Validate the arguments of an update run.

        Args:
            install_path: Install path (the staged installation slot).
            live_path: Live installation path.
            process_id: Process blocking the update.

        Returns:
            Tuple of (install_path, live_path) as Path objects.

        Raises:
            InvalidArgumentError: If any argument is invalid.
        """
        if not install_path or not str(install_path).strip():
            raise InvalidArgumentError(
                "Install path was null or empty.",
                details={"install_path": install_path},
            )
        if not live_path or not str(live_path).strip():
            raise InvalidArgumentError(
                "The target path was null or empty.",
                details={"live_path": live_path},
            )
        if (
            not isinstance(process_id, int)
            or isinstance(process_id, bool)
            or process_id <= 0
        ):
            raise InvalidArgumentError(
                "pid should not be empty or 0!",
                details={"pid": process_id},
            )
        if process_id == os.getpid():
            raise InvalidArgumentError(
                "pid must not be the updater's own process",
                details={"pid": process_id},
            )

        install = Path(os.path.normpath(install_path))
        live = Path(os.path.normpath(live_path))

        for name, path in (("install_path", install), ("live_path", live)):
            if not path.is_absolute():
                raise InvalidArgumentError(
                    f"The {name} is not absolute: {path}",
                    details={name: str(path)},
                )

        if install == live or install.is_relative_to(live) or live.is_relative_to(install):
            raise InvalidArgumentError(
                "Install path and target path must be separate directories",
                details={"install_path": str(install), "live_path": str(live)},
            )

        return install, live

    def _working_directory(self) -> Path:
        configured = self.config.transaction.working_directory
        return Path(configured) if configured else Path(tempfile.gettempdir())

    def apply(
        self,
        install_path: Path | str | None,
        live_path: Path | str | None,
        process_id: int | None,
    ) -> UpdateResult:
        """
        Wait for the blocking process and swap the directories.

        Never raises for update failures; they are reported in the result.

        Args:
            install_path: Install path (the staged installation slot).
            live_path: Live installation path.
            process_id: Process blocking the update.

        Returns:
            UpdateResult without relaunch information.
        """
        result = UpdateResult(log_file=str(self.log_file) if self.log_file else None)
        transaction_started = False

        try:
            install, live = self.validate(install_path, live_path, process_id)

            # Keep neither directory open as our working directory
            with contextlib.chdir(self._working_directory()):
                result.process_killed = self.waiter.wait(process_id)  # type: ignore[arg-type]
                transaction_started = True
                record = self.transaction.apply(install, live)

            result.transaction_state = record.state
            logger.info("Update succeeded", extra={"install_path": str(install)})

        except UpdateError as e:
            result.outcome = outcome_for_error(e)
            result.error_code = e.error_code
            result.message = e.message
            result.details = e.details
            logger.error(
                e.message,
                extra={"error_code": e.error_code, "outcome": result.outcome.name},
            )
        except Exception as e:
            result.outcome = UpdateOutcome.UNHANDLED_FAILURE
            result.error_code = "internal"
            result.message = str(e)
            logger.exception(
                f"Unhandled error during update: {e}",
                extra={"outcome": result.outcome.name},
            )

        if transaction_started and result.transaction_state is None:
            result.transaction_state = self.transaction.state.value

        return result

    def relaunch(
        self,
        result: UpdateResult,
        install_path: Path | str | None,
        live_path: Path | str | None,
    ) -> UpdateResult:
        """
        Start the application with the outcome of the run.

        The executable is looked up in the live path first and in the
        install path second; after a successful cutover only the latter
        still exists.

        Args:
            result: Result of the update run; updated in place.
            install_path: Install path of the run.
            live_path: Live installation path of the run.

        Returns:
            The updated result.
        """
        launcher_config = self.config.launcher
        if not launcher_config.enabled:
            logger.info("Relaunch disabled")
            return result

        directories = [
            Path(p) for p in (live_path, install_path) if p and str(p).strip()
        ]

        try:
            executable = resolve_executable(launcher_config.executable_name, directories)
            relaunch(
                executable,
                int(result.outcome),
                self.log_file,
                result_switch=launcher_config.result_switch,
                log_switch=launcher_config.log_switch,
            )
            result.relaunched = True
        except RelaunchError as e:
            result.relaunch_error = e.message
            logger.error(
                f"Relaunch failed: {e.message}",
                extra={"error_code": e.error_code, "details": e.details},
            )

        return result

    def run(
        self,
        install_path: Path | str | None,
        live_path: Path | str | None,
        process_id: int | None,
    ) -> UpdateResult:
        """
        Run a complete update and relaunch the application.

        The relaunch is attempted even when the update failed, so the user
        is never left without a running application.

        Args:
            install_path: Install path (the staged installation slot).
            live_path: Live installation path.
            process_id: Process blocking the update.

        Returns:
            UpdateResult describing the update and the relaunch.
        """
        result = self.apply(install_path, live_path, process_id)
        return self.relaunch(result, install_path, live_path)
