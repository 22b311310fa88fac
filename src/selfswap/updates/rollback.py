"""
Recovery logic for a failed cutover.

When the live installation cannot be moved into the install path because
access is denied, the transaction puts everything back where it was:
- entries the cutover already copied into the install path go back to the
  live path (only possible after a copy_tree fallback)
- the backup is moved back into the install path

If any of this fails the filesystem is in a mixed state. There is no safe
automated next step, so UnrecoverableStateError is raised with every path
and error involved.
"""

from __future__ import annotations

from pathlib import Path

from selfswap.errors import UnrecoverableStateError, UpdateError
from selfswap.logging import get_logger
from selfswap.updates.operations import discard_partial_files, move_directory

logger = get_logger(__name__)


def restore_after_failed_cutover(
    install_path: Path,
    live_path: Path,
    backup_path: Path,
    cause: BaseException | None = None,
) -> None:
    """
    Undo the backup step after the cutover was refused.

    Args:
        install_path: Install path the backup was taken from.
        live_path: Live installation the cutover tried to move.
        backup_path: Backup holding the original install path contents.
        cause: The error that made the cutover fail, for diagnostics.

    Raises:
        UnrecoverableStateError: If the original layout cannot be restored.
    """
    logger.warning(
        "Cutover was refused; restoring backup",
        extra={
            "install_path": str(install_path),
            "live_path": str(live_path),
            "backup_path": str(backup_path),
        },
    )

    try:
        if install_path.exists():
            # Partially copied live entries; hand them back first
            logger.info(
                f'Returning partially moved entries from "{install_path}" to "{live_path}"'
            )
            discard_partial_files(install_path)
            move_directory(install_path, live_path)

        move_directory(backup_path, install_path)

    except (UpdateError, OSError) as e:
        details = {
            "install_path": str(install_path),
            "live_path": str(live_path),
            "backup_path": str(backup_path),
            "install_path_exists": install_path.exists(),
            "live_path_exists": live_path.exists(),
            "backup_path_exists": backup_path.exists(),
            "restore_error": repr(e),
            "cutover_error": repr(cause) if cause is not None else None,
        }
        logger.critical(
            "Backup failed to restore; installation is in an undefined state "
            "and needs manual repair",
            extra=details,
        )
        raise UnrecoverableStateError(
            "Backup failed to restore; this should never happen",
            details=details,
        ) from e

    logger.info(
        "Backup restored",
        extra={"install_path": str(install_path), "backup_path": str(backup_path)},
    )
