"""
Relaunch of the application after an update.

The application is started detached from the updater, with the outcome code
and the application log path as informational arguments. The updater does
not wait for it and does not check how it fares afterwards.
"""

from __future__ import annotations

import subprocess
import sys
from collections.abc import Iterable
from pathlib import Path

from selfswap.errors import RelaunchError
from selfswap.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RESULT_SWITCH = "--patch-result"
DEFAULT_LOG_SWITCH = "--application-log"


def resolve_executable(executable_name: str, directories: Iterable[Path]) -> Path:
    """
    Find the application executable in the first directory containing it.

    Args:
        executable_name: File name of the executable.
        directories: Candidate directories, in order of preference.

    Returns:
        Path to the executable.

    Raises:
        RelaunchError: If no candidate directory contains the executable.
    """
    searched = []
    for directory in directories:
        candidate = Path(directory) / executable_name
        searched.append(str(candidate))
        if candidate.is_file():
            return candidate

    raise RelaunchError(
        f"Application executable {executable_name!r} not found",
        details={"searched": searched},
    )


def build_arguments(
    executable: Path,
    outcome_code: int,
    log_file: Path | None,
    *,
    result_switch: str = DEFAULT_RESULT_SWITCH,
    log_switch: str = DEFAULT_LOG_SWITCH,
) -> list[str]:
    """Build the command line of the relaunched application."""
    args = [str(executable), f"{result_switch}={outcome_code}"]
    if log_file is not None:
        args.append(f"{log_switch}={log_file}")
    return args


def relaunch(
    executable: Path,
    outcome_code: int,
    log_file: Path | None = None,
    *,
    result_switch: str = DEFAULT_RESULT_SWITCH,
    log_switch: str = DEFAULT_LOG_SWITCH,
) -> subprocess.Popen[bytes]:
    """
    Start the application detached from the updater.

    Args:
        executable: Path to the application executable.
        outcome_code: Integer outcome of the update.
        log_file: Application log file of this run.
        result_switch: Switch carrying the outcome code.
        log_switch: Switch carrying the log file path.

    Returns:
        The started process.

    Raises:
        RelaunchError: If the executable cannot be started.
    """
    args = build_arguments(
        executable,
        outcome_code,
        log_file,
        result_switch=result_switch,
        log_switch=log_switch,
    )

    kwargs: dict[str, object] = {
        "cwd": str(executable.parent),
        "close_fds": True,
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
    }
    if sys.platform == "win32":
        kwargs["creationflags"] = getattr(subprocess, "DETACHED_PROCESS", 0) | getattr(
            subprocess, "CREATE_NEW_PROCESS_GROUP", 0
        )
    else:
        kwargs["start_new_session"] = True

    logger.info(f"Starting {executable}", extra={"command": args})

    try:
        return subprocess.Popen(args, **kwargs)  # type: ignore[call-overload]
    except OSError as e:
        raise RelaunchError(
            f"Failed to start {executable}: {e}",
            details={"executable": str(executable), "error": str(e)},
        ) from e
