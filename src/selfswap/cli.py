"""
Command-line entry point for the selfswap updater.

Usage:
    selfswap --target=<fully_qualified_path> --pid=<processId>

The exit status is the integer outcome code of the update, or
RELAUNCH_FAILED_EXIT_CODE when the application could not be started again.
Invalid arguments print the errors and the usage and exit with status 2
before anything is touched.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from selfswap.config import load_config
from selfswap.logging import create_application_log_file, setup_logging
from selfswap.orchestrator import UpdateOrchestrator

# Exit status when the update ran but the application could not be relaunched
RELAUNCH_FAILED_EXIT_CODE = 8


def _directory_path(value: str) -> str:
    """argparse type: a directory path without trailing separators."""
    stripped = value.rstrip("/\\") or value[:1]
    if not stripped:
        raise argparse.ArgumentTypeError("path should not be empty")
    return stripped


def _process_id(value: str) -> int:
    """argparse type: a positive process id."""
    try:
        pid = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid pid: {value!r}") from e
    if pid <= 0:
        raise argparse.ArgumentTypeError("pid should not be empty or 0!")
    return pid


def default_install_path() -> Path:
    """
    Return the directory the updater itself runs from.

    For a frozen executable this is the executable's directory, otherwise
    the directory of the invoked script.
    """
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(sys.argv[0]).resolve().parent


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser of the updater."""
    parser = argparse.ArgumentParser(
        prog="selfswap",
        description="Swap a staged installation into place and relaunch the application",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--target",
        type=_directory_path,
        required=True,
        help="Fully qualified path of the live installation",
    )
    parser.add_argument(
        "--pid",
        type=_process_id,
        required=True,
        help="Process ID of the application blocking the update",
    )
    parser.add_argument(
        "--source",
        type=_directory_path,
        help="Install path (default: directory of the updater)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to wait for the application to exit before killing it",
    )

    return parser


def _config_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate parsed arguments into nested configuration overrides."""
    result: dict[str, Any] = {}

    if args.log_level:
        result["logging"] = {"level": args.log_level}

    if args.debug:
        result.setdefault("logging", {})
        result["logging"]["debug_mode"] = True
        result["logging"]["level"] = "debug"

    if args.timeout is not None:
        result["process"] = {"exit_timeout_seconds": args.timeout}

    return result


def main(argv: list[str] | None = None) -> int:
    """
    Run the updater.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Process exit status.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config, overrides=_config_overrides(args))
    except (FileNotFoundError, ValidationError, yaml.YAMLError) as e:
        parser.error(f"invalid configuration: {e}")

    if config.logging.app_log_path:
        log_file = Path(config.logging.app_log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
    else:
        log_file = create_application_log_file()
    setup_logging(config.logging, log_file=log_file)

    install_path = Path(os.path.abspath(args.source)) if args.source else default_install_path()
    live_path = Path(os.path.abspath(args.target))

    orchestrator = UpdateOrchestrator(config, log_file=log_file)
    result = orchestrator.run(install_path, live_path, args.pid)

    if config.launcher.enabled and not result.relaunched:
        return RELAUNCH_FAILED_EXIT_CODE
    return int(result.outcome)
