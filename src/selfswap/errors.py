"""
Error types for the selfswap updater.

This module defines the UpdateError base class and one subclass per failure
kind of the update transaction. Components raise these errors; the
orchestrator catches them at its boundary and converts each one to an
UpdateOutcome code instead of letting them escape.

Filesystem and process errors are always chained (``raise ... from e``) so the
original OS error stays available in logs.
"""

from __future__ import annotations

from typing import Any


class UpdateError(Exception):
    """
    Base exception class for update transaction errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "cannot_kill_process", "insufficient_move_permissions").
        message: Human-readable error message.
        details: Optional structured details (e.g., paths, process id).

    Example:
        >>> raise UpdateError(
        ...     error_code="invalid_argument",
        ...     message="pid should not be empty or 0!",
        ...     details={"pid": 0},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdateError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(UpdateError):
    """
    Error raised when the updater receives invalid paths or process id.

    Raised before any filesystem or process side effect is attempted.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class CannotKillProcessError(UpdateError):
    """
    Error raised when the blocking process refuses to be terminated.

    The live directory cannot be touched while that process still holds
    file handles, so this is fatal to the transaction.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a CannotKillProcessError."""
        super().__init__(
            error_code="cannot_kill_process", message=message, details=details
        )


class InsufficientDeletePermissionsError(UpdateError):
    """
    Error raised when a path can be deleted neither as a directory nor as a file.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InsufficientDeletePermissionsError."""
        super().__init__(
            error_code="insufficient_delete_permissions",
            message=message,
            details=details,
        )


class InsufficientMovePermissionsError(UpdateError):
    """
    Error raised when a directory move is refused with access denied.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InsufficientMovePermissionsError."""
        super().__init__(
            error_code="insufficient_move_permissions",
            message=message,
            details=details,
        )


class MoveDirectoryMissingError(UpdateError):
    """
    Error raised when the source of a move does not exist.

    This usually means the installation is corrupted or incomplete.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a MoveDirectoryMissingError."""
        super().__init__(
            error_code="move_directory_missing", message=message, details=details
        )


class UnrecoverableStateError(UpdateError):
    """
    Error raised when restoring the backup after a failed cutover also fails.

    The filesystem is left in a mixed state that needs operator attention.
    This is deliberately outside the regular failure taxonomy.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnrecoverableStateError."""
        super().__init__(
            error_code="unrecoverable_state", message=message, details=details
        )


class InternalError(UpdateError):
    """
    Error raised for unexpected internal errors (broken invariants, invalid
    state transitions).
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)


class RelaunchError(UpdateError):
    """Error raised when the application executable cannot be started."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a RelaunchError."""
        super().__init__(
            error_code="relaunch_failed", message=message, details=details
        )
