"""
Directory transaction state machine for the selfswap updater.

This module implements the DirectoryTransaction class that swaps the live
installation into the install path through a safety backup.

State machine states:
- start: Nothing touched yet
- backup_cleared: Stale backup from a previous run removed
- install_moved_to_backup: Install path parked under the backup path
- live_moved: Live installation moved into the install path (cutover)
- succeeded: Backup removed, transaction complete
- restored: Cutover refused, pre-transaction layout restored
- unrecoverable: Cutover refused and the restore failed as well
- failed: Any other step failed

Every step is attempted exactly once; there is no retry loop.

The record of a running transaction is saved to a state file next to the
backup after every transition. A later run finding a record that stopped
between two steps resumes from that step instead of starting over, so a
crash in the middle of a copy never loses the entries already moved.
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from selfswap.errors import (
    InsufficientMovePermissionsError,
    InternalError,
    UnrecoverableStateError,
)
from selfswap.logging import get_logger
from selfswap.updates.operations import delete_path, move_directory
from selfswap.updates.rollback import restore_after_failed_cutover

logger = get_logger(__name__)

DEFAULT_BACKUP_SUFFIX = "_backup"

# Appended to the backup path to build the default state file path
STATE_FILE_SUFFIX = ".state.json"


class TransactionState(str, Enum):
    """
    States of a directory transaction.

    State transitions:
    - start → backup_cleared (stale backup deleted)
    - backup_cleared → install_moved_to_backup (backup taken)
    - install_moved_to_backup → live_moved (cutover done)
    - install_moved_to_backup → restored (cutover refused, backup restored)
    - install_moved_to_backup → unrecoverable (backup could not be restored)
    - live_moved → succeeded (backup deleted)
    - any non-terminal state → failed
    """

    START = "start"
    BACKUP_CLEARED = "backup_cleared"
    INSTALL_MOVED_TO_BACKUP = "install_moved_to_backup"
    LIVE_MOVED = "live_moved"
    SUCCEEDED = "succeeded"
    RESTORED = "restored"
    UNRECOVERABLE = "unrecoverable"
    FAILED = "failed"


# Valid state transitions
_VALID_TRANSITIONS: dict[TransactionState, set[TransactionState]] = {
    TransactionState.START: {TransactionState.BACKUP_CLEARED, TransactionState.FAILED},
    TransactionState.BACKUP_CLEARED: {
        TransactionState.INSTALL_MOVED_TO_BACKUP,
        TransactionState.FAILED,
    },
    TransactionState.INSTALL_MOVED_TO_BACKUP: {
        TransactionState.LIVE_MOVED,
        TransactionState.RESTORED,
        TransactionState.UNRECOVERABLE,
        TransactionState.FAILED,
    },
    TransactionState.LIVE_MOVED: {TransactionState.SUCCEEDED, TransactionState.FAILED},
    TransactionState.SUCCEEDED: set(),
    TransactionState.RESTORED: set(),
    TransactionState.UNRECOVERABLE: set(),
    TransactionState.FAILED: set(),
}

TERMINAL_STATES = frozenset(
    state for state, targets in _VALID_TRANSITIONS.items() if not targets
)

# States a later run can resume from
RESUMABLE_STATES = frozenset(
    {
        TransactionState.BACKUP_CLEARED,
        TransactionState.INSTALL_MOVED_TO_BACKUP,
        TransactionState.LIVE_MOVED,
    }
)


class TransactionStateData(BaseModel):
    """Record of one directory transaction, saved to disk while it runs."""

    state: str = Field(
        default=TransactionState.START.value,
        description="Current state machine state",
    )
    install_path: str | None = Field(
        default=None,
        description="Install path receiving the live installation",
    )
    live_path: str | None = Field(
        default=None,
        description="Live installation being moved",
    )
    backup_path: str | None = Field(
        default=None,
        description="Backup path holding the install path during the swap",
    )
    started_at: str | None = Field(
        default=None,
        description="ISO 8601 timestamp when the transaction started",
    )
    last_transition_at: str | None = Field(
        default=None,
        description="ISO 8601 timestamp of last state transition",
    )
    recovered_interrupted_run: bool = Field(
        default=False,
        description="Whether work left by an interrupted run was picked up",
    )
    error_message: str | None = Field(
        default=None,
        description="Error message if the transaction did not succeed",
    )


class DirectoryTransaction:
    """
    Swaps the live installation into the install path via a backup.

    The net effect of a successful apply() is that the install path holds
    what used to be in the live path, and neither the live path nor the
    backup path exist anymore.

    Attributes:
        backup_suffix: Suffix appended to the install path for the backup.
        state: Current state of the last transaction.
        state_data: Record of the last transaction.

    Example:
        >>> transaction = DirectoryTransaction()
        >>> record = transaction.apply(Path("/app/new"), Path("/app/live"))
        >>> record.state
        'succeeded'
    """

    def __init__(
        self,
        backup_suffix: str = DEFAULT_BACKUP_SUFFIX,
        state_file: Path | str | None = None,
    ) -> None:
        """
        Initialize the DirectoryTransaction.

        Args:
            backup_suffix: Suffix appended to the install path to build the
                backup path.
            state_file: Path of the state file. Defaults to a file next to
                the backup path.
        """
        self.backup_suffix = backup_suffix
        self._state_file = Path(state_file) if state_file else None
        self._state_data = TransactionStateData()
        self._transition_callbacks: list[Callable[[TransactionStateData], None]] = []

    @property
    def state(self) -> TransactionState:
        """Get the current state."""
        return TransactionState(self._state_data.state)

    @property
    def state_data(self) -> TransactionStateData:
        """Get the state data."""
        return self._state_data

    def backup_path_for(self, install_path: Path) -> Path:
        """Return the backup path belonging to an install path."""
        return install_path.with_name(f"{install_path.name}{self.backup_suffix}")

    def state_file_for(self, install_path: Path) -> Path:
        """Return the state file of transactions on an install path."""
        if self._state_file is not None:
            return self._state_file
        backup_path = self.backup_path_for(install_path)
        return backup_path.with_name(f"{backup_path.name}{STATE_FILE_SUFFIX}")

    def add_transition_callback(
        self, callback: Callable[[TransactionStateData], None]
    ) -> None:
        """Add a callback to be notified of state changes."""
        self._transition_callbacks.append(callback)

    def _notify_transition(self) -> None:
        for callback in self._transition_callbacks:
            try:
                callback(self._state_data)
            except Exception as e:
                logger.warning(f"Transition callback failed: {e}")

    def _transition_to(
        self,
        new_state: TransactionState,
        *,
        error_message: str | None = None,
    ) -> None:
        """
        Transition to a new state.

        The record is saved after every transition into a resumable state.
        It is removed once the transaction succeeded or was restored; after
        any other outcome the last resumable record stays on disk so the next
        run continues from it.

        Args:
            new_state: The state to transition to.
            error_message: Optional error message for non-success states.

        Raises:
            InternalError: If the transition is not valid.
        """
        current = self.state

        if new_state not in _VALID_TRANSITIONS.get(current, set()):
            raise InternalError(
                f"Invalid state transition from {current.value} to {new_state.value}",
                details={
                    "current_state": current.value,
                    "target_state": new_state.value,
                    "valid_transitions": sorted(
                        s.value for s in _VALID_TRANSITIONS.get(current, set())
                    ),
                },
            )

        logger.debug(
            f"State transition: {current.value} -> {new_state.value}",
            extra={"old_state": current.value, "new_state": new_state.value},
        )

        self._state_data.state = new_state.value
        self._state_data.last_transition_at = datetime.now(UTC).isoformat()

        if error_message is not None:
            self._state_data.error_message = error_message

        if new_state in RESUMABLE_STATES:
            self._save_state()
        elif new_state in (TransactionState.SUCCEEDED, TransactionState.RESTORED):
            self._clear_state()

        self._notify_transition()

    def _current_state_file(self) -> Path | None:
        if not self._state_data.install_path:
            return None
        return self.state_file_for(Path(self._state_data.install_path))

    def _save_state(self) -> None:
        """Save the current record to disk."""
        state_file = self._current_state_file()
        if state_file is None:
            return
        try:
            state_file.parent.mkdir(parents=True, exist_ok=True)

            # Atomic write
            temp_file = state_file.with_name(f"{state_file.name}.tmp")
            with open(temp_file, "w") as f:
                json.dump(self._state_data.model_dump(), f, indent=2)
            os.replace(temp_file, state_file)

            logger.debug(
                "Saved transaction state",
                extra={"path": str(state_file), "state": self._state_data.state},
            )
        except OSError as e:
            logger.warning(f"Failed to save transaction state: {e}")

    def _load_state(self, state_file: Path) -> TransactionStateData | None:
        """Load a record left by an earlier run, if any."""
        try:
            if not state_file.exists():
                return None
            with open(state_file) as f:
                data = json.load(f)
            record = TransactionStateData(**data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable transaction state: {e}")
            return None

        logger.debug(
            "Loaded transaction state",
            extra={"path": str(state_file), "state": record.state},
        )
        return record

    def _clear_state(self) -> None:
        """Remove the state file of the current record."""
        state_file = self._current_state_file()
        if state_file is None:
            return
        try:
            state_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove transaction state file: {e}")

    def _resumable_record(
        self, install_path: Path, live_path: Path
    ) -> TransactionStateData | None:
        """Return the record of an interrupted run on the same paths, if any."""
        record = self._load_state(self.state_file_for(install_path))
        if record is None:
            return None
        if record.state not in {s.value for s in RESUMABLE_STATES}:
            return None
        if record.install_path != str(install_path) or record.live_path != str(
            live_path
        ):
            logger.warning(
                "Ignoring transaction state recorded for other paths",
                extra={
                    "recorded_install_path": record.install_path,
                    "recorded_live_path": record.live_path,
                },
            )
            return None
        return record

    def _check_backup_cleared(self, backup_path: Path) -> None:
        """Raise if the backup still exists when a terminal branch is declared."""
        if os.path.lexists(backup_path):
            raise InternalError(
                f"Backup still present at end of transaction: {backup_path}",
                details={"backup_path": str(backup_path), "state": self.state.value},
            )

    def _recover_interrupted_run(self, install_path: Path, backup_path: Path) -> None:
        """Put back a backup left by a run that crashed right after taking it."""
        if not os.path.lexists(backup_path) or os.path.lexists(install_path):
            return

        logger.warning(
            "Found backup from an interrupted update; moving it back",
            extra={"install_path": str(install_path), "backup_path": str(backup_path)},
        )
        move_directory(backup_path, install_path)
        self._state_data.recovered_interrupted_run = True

    def _restore(
        self,
        install_path: Path,
        live_path: Path,
        backup_path: Path,
        cause: InsufficientMovePermissionsError,
    ) -> None:
        try:
            restore_after_failed_cutover(install_path, live_path, backup_path, cause)
        except UnrecoverableStateError as e:
            self._transition_to(TransactionState.UNRECOVERABLE, error_message=e.message)
            raise

        self._check_backup_cleared(backup_path)
        self._transition_to(TransactionState.RESTORED, error_message=cause.message)

    def _begin(
        self, install_path: Path, live_path: Path, backup_path: Path
    ) -> bool:
        """Start a new record, or pick up the one of an interrupted run."""
        record = self._resumable_record(install_path, live_path)
        if record is not None:
            logger.warning(
                f"Resuming interrupted update from state {record.state}",
                extra={"install_path": str(install_path), "live_path": str(live_path)},
            )
            record.recovered_interrupted_run = True
            record.error_message = None
            self._state_data = record
            return True

        now = datetime.now(UTC).isoformat()
        self._state_data = TransactionStateData(
            install_path=str(install_path),
            live_path=str(live_path),
            backup_path=str(backup_path),
            started_at=now,
            last_transition_at=now,
        )
        return False

    def apply(
        self, install_path: Path | str, live_path: Path | str
    ) -> TransactionStateData:
        """
        Swap the live installation into the install path.

        The blocking process must have exited before this is called. When
        an earlier run on the same paths stopped between two steps, the
        transaction resumes from where it stopped.

        Args:
            install_path: Path whose slot receives the live installation.
            live_path: Path of the live installation.

        Returns:
            The record of the completed transaction.

        Raises:
            InsufficientDeletePermissionsError: If the backup cannot be deleted.
            InsufficientMovePermissionsError: If a move is refused. When the
                cutover is refused the original layout is restored first.
            MoveDirectoryMissingError: If a directory to move is missing.
            UnrecoverableStateError: If restoring after a refused cutover failed.
            InternalError: If a transaction invariant is broken.
        """
        install_path = Path(install_path)
        live_path = Path(live_path)
        backup_path = self.backup_path_for(install_path)

        resumed = self._begin(install_path, live_path, backup_path)

        logger.info(
            "Applying update",
            extra={
                "install_path": str(install_path),
                "live_path": str(live_path),
                "backup_path": str(backup_path),
            },
        )

        try:
            if self.state == TransactionState.START:
                self._recover_interrupted_run(install_path, backup_path)

                # Stale backups are never merged
                delete_path(backup_path)
                self._transition_to(TransactionState.BACKUP_CLEARED)

            if self.state == TransactionState.BACKUP_CLEARED:
                # A resumed move may already be complete
                if not (
                    resumed
                    and os.path.lexists(backup_path)
                    and not os.path.lexists(install_path)
                ):
                    move_directory(install_path, backup_path)
                self._transition_to(TransactionState.INSTALL_MOVED_TO_BACKUP)

            if self.state == TransactionState.INSTALL_MOVED_TO_BACKUP:
                if not (
                    resumed
                    and os.path.lexists(install_path)
                    and not os.path.lexists(live_path)
                ):
                    try:
                        # Merges into entries copied by an interrupted run
                        move_directory(live_path, install_path)
                    except InsufficientMovePermissionsError as e:
                        self._restore(install_path, live_path, backup_path, e)
                        raise
                self._transition_to(TransactionState.LIVE_MOVED)

            delete_path(backup_path)
            self._check_backup_cleared(backup_path)
            self._transition_to(TransactionState.SUCCEEDED)

        except Exception as e:
            if self.state not in TERMINAL_STATES:
                self._transition_to(TransactionState.FAILED, error_message=str(e))
            raise

        logger.info("Update applied", extra={"install_path": str(install_path)})
        return self._state_data
