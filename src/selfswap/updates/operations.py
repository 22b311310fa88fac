"""
Directory move and delete operations for the selfswap updater.

This module implements the filesystem primitives of the update transaction:
- delete_path: idempotent delete of a directory tree (or a stray file)
- move_directory: rename a directory, falling back to copy_tree when the
  rename is impossible (e.g., across volumes)
- copy_tree: move a tree entry by entry so an interrupted copy can be resumed
- discard_partial_files: drop temporary copies left by an interrupted copy_tree

copy_tree moves one file at a time: the file is copied to a temporary name
next to its destination, renamed into place with os.replace, and only then
removed from the source. A crash therefore never leaves a half-written file
under its final name, and every file exists in at least one of the two trees.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from selfswap.errors import (
    InsufficientDeletePermissionsError,
    InsufficientMovePermissionsError,
    MoveDirectoryMissingError,
)
from selfswap.logging import get_logger

logger = get_logger(__name__)

# Prefix of the temporary names used while a file is being copied
PARTIAL_FILE_PREFIX = ".selfswap-partial-"


def delete_path(path: Path) -> bool:
    """
    Delete a directory tree, or a single file standing where a directory
    is expected.

    Args:
        path: Path to delete.

    Returns:
        True if something was removed, False if the path did not exist.

    Raises:
        InsufficientDeletePermissionsError: If the path can be deleted
            neither as a directory nor as a file.
    """
    try:
        shutil.rmtree(path)
        logger.debug("Removed directory", extra={"path": str(path)})
        return True
    except FileNotFoundError:
        return False
    except OSError as dir_error:
        # A previous partial run may have left a file (or symlink) here
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise InsufficientDeletePermissionsError(
                f'Failed to delete file/directory "{path}"',
                details={
                    "path": str(path),
                    "directory_error": str(dir_error),
                    "error": str(e),
                },
            ) from e

    logger.debug("Removed file", extra={"path": str(path)})
    return True


def _move_details(source: Path, destination: Path, error: OSError) -> dict[str, str]:
    return {
        "source": str(source),
        "destination": str(destination),
        "error": str(error),
    }


def move_directory(source: Path, destination: Path) -> None:
    """
    Move a directory tree from one place to another.

    Tries a single rename first. When that is impossible for a reason other
    than a missing source or denied access, the tree is moved with
    copy_tree instead.

    Args:
        source: Directory to move.
        destination: Target path of the directory.

    Raises:
        MoveDirectoryMissingError: If the source directory does not exist.
        InsufficientMovePermissionsError: If the move is refused with
            access denied.
    """
    try:
        try:
            os.rename(source, destination)
            logger.debug(
                "Renamed directory",
                extra={"source": str(source), "destination": str(destination)},
            )
            return
        except (FileNotFoundError, PermissionError):
            raise
        except OSError as e:
            logger.info(
                f'Could not move directory "{source}" to "{destination}", '
                f"attempting copy_tree instead.",
                extra={"error": str(e)},
            )

        # Likely a cross-volume move; copy entry by entry instead
        copy_tree(source, destination)

    except PermissionError as e:
        raise InsufficientMovePermissionsError(
            f'Failed to move file/directory from "{source}" to "{destination}"',
            details=_move_details(source, destination, e),
        ) from e
    except FileNotFoundError as e:
        raise MoveDirectoryMissingError(
            f'Failed to move file/directory from "{source}" to "{destination}"',
            details=_move_details(source, destination, e),
        ) from e


def _move_file(source: Path, destination: Path) -> None:
    """Copy one file into place, then remove the source."""
    partial = destination.with_name(f"{PARTIAL_FILE_PREFIX}{destination.name}")
    shutil.copy2(source, partial, follow_symlinks=False)
    os.replace(partial, destination)
    os.unlink(source)


def copy_tree(source: Path, destination: Path) -> None:
    """
    Move a directory tree by copying and deleting each entry.

    Files are moved before subdirectories; a subdirectory is recursed into
    and removed once it is empty. Existing destination files are
    overwritten. The source root is removed last.

    Args:
        source: Directory to move.
        destination: Target path; created if missing.

    Raises:
        FileNotFoundError: If the source directory does not exist.
        PermissionError: If an entry cannot be read, written or removed.
        OSError: For any other filesystem failure.
    """
    if not source.is_dir():
        raise FileNotFoundError(f"No such directory: '{source}'")

    destination.mkdir(parents=True, exist_ok=True)

    with os.scandir(source) as it:
        entries = sorted(it, key=lambda entry: entry.name)

    files = [e for e in entries if not e.is_dir(follow_symlinks=False)]
    directories = [e for e in entries if e.is_dir(follow_symlinks=False)]

    for entry in files:
        _move_file(Path(entry.path), destination / entry.name)

    # Each recursive call removes its own (by then empty) source directory
    for entry in directories:
        copy_tree(Path(entry.path), destination / entry.name)

    os.rmdir(source)


def discard_partial_files(root: Path) -> int:
    """
    Remove temporary copy files left under root by an interrupted copy_tree.

    Returns:
        Number of files removed.
    """
    removed = 0
    for path in root.rglob(f"{PARTIAL_FILE_PREFIX}*"):
        if path.is_dir() and not path.is_symlink():
            continue
        path.unlink(missing_ok=True)
        removed += 1
    if removed:
        logger.debug(
            "Discarded partial files", extra={"path": str(root), "count": removed}
        )
    return removed
