"""
Tests for the logging module.

This test module validates:
- JSON-formatted log output
- Application log file lines
- Routing of records between stdout and stderr
- Logger naming
"""

from __future__ import annotations

import json
import logging
import sys
from io import StringIO
from pathlib import Path

from selfswap.config import LoggingConfig
from selfswap.logging import (
    JSONFormatter,
    create_application_log_file,
    get_logger,
    setup_logging,
)

# =============================================================================
# Tests for JSONFormatter
# =============================================================================


class TestJSONFormatter:
    """Tests for JSONFormatter class."""

    def _record(self, **kwargs: object) -> logging.LogRecord:
        record = logging.LogRecord(
            name="selfswap.test",
            level=logging.INFO,
            pathname="test.py",
            lineno=10,
            msg="Test message",
            args=(),
            exc_info=kwargs.pop("exc_info", None),  # type: ignore[arg-type]
        )
        for key, value in kwargs.items():
            setattr(record, key, value)
        return record

    def test_format_basic_log_record(self) -> None:
        """Test formatting a basic log record as JSON."""
        output = json.loads(JSONFormatter().format(self._record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "selfswap.test"
        assert output["message"] == "Test message"
        assert "timestamp" in output

    def test_format_includes_extra_fields(self) -> None:
        """Test that extra fields are included."""
        output = json.loads(
            JSONFormatter().format(self._record(pid=4242, install_path="/app/new"))
        )

        assert output["pid"] == 4242
        assert output["install_path"] == "/app/new"

    def test_format_includes_exception(self) -> None:
        """Test that exception info is formatted."""
        try:
            raise ValueError("boom")
        except ValueError:
            exc_info = sys.exc_info()

        output = json.loads(JSONFormatter().format(self._record(exc_info=exc_info)))

        assert "ValueError: boom" in output["exception"]


# =============================================================================
# Tests for setup_logging
# =============================================================================


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_application_log_file_lines(self, tmp_path: Path) -> None:
        """Test that the log file receives plain [LEVEL] lines."""
        log_file = tmp_path / "update.log"
        logger = setup_logging(
            log_file=log_file, stdout=StringIO(), stderr=StringIO()
        )

        get_logger("selfswap.test").info("Waiting for launcher to close...")
        get_logger("selfswap.test").error("Failed to move")
        for handler in logger.handlers:
            handler.flush()

        lines = log_file.read_text().splitlines()
        assert lines == [
            "[INFO] Waiting for launcher to close...",
            "[ERROR] Failed to move",
        ]

    def test_errors_go_to_stderr_only(self) -> None:
        """Test that errors are written to stderr and not to stdout."""
        stdout, stderr = StringIO(), StringIO()
        setup_logging(stdout=stdout, stderr=stderr)

        get_logger("test").info("informational")
        get_logger("test").error("failure")

        assert "informational" in stdout.getvalue()
        assert "failure" not in stdout.getvalue()
        assert "failure" in stderr.getvalue()
        assert "informational" not in stderr.getvalue()

    def test_log_to_stdout_disabled(self) -> None:
        """Test that stdout stays empty when disabled."""
        stdout = StringIO()
        setup_logging(log_to_stdout=False, stdout=stdout, stderr=StringIO())

        get_logger("test").info("informational")

        assert stdout.getvalue() == ""

    def test_json_format(self) -> None:
        """Test that stdout records are JSON when requested."""
        stdout = StringIO()
        setup_logging(json_format=True, stdout=stdout, stderr=StringIO())

        get_logger("test").info("hello", extra={"pid": 1})

        entry = json.loads(stdout.getvalue().strip())
        assert entry["message"] == "hello"
        assert entry["pid"] == 1

    def test_config_debug_mode(self) -> None:
        """Test that debug_mode forces the DEBUG level."""
        logger = setup_logging(
            LoggingConfig(level="error", debug_mode=True),
            stdout=StringIO(),
            stderr=StringIO(),
        )
        assert logger.level == logging.DEBUG

    def test_config_level(self) -> None:
        """Test that the configured level is applied."""
        stdout = StringIO()
        logger = setup_logging(
            LoggingConfig(level="warning"), stdout=stdout, stderr=StringIO()
        )

        get_logger("test").info("hidden")

        assert logger.level == logging.WARNING
        assert stdout.getvalue() == ""

    def test_no_duplicate_handlers(self) -> None:
        """Test that repeated setup replaces handlers."""
        setup_logging(stdout=StringIO(), stderr=StringIO())
        logger = setup_logging(stdout=StringIO(), stderr=StringIO())

        assert len(logger.handlers) == 2
        assert logger.propagate is False


# =============================================================================
# Tests for helpers
# =============================================================================


class TestHelpers:
    """Tests for logger helpers."""

    def test_get_logger_adds_prefix(self) -> None:
        """Test that the package prefix is added."""
        assert get_logger("orchestrator").name == "selfswap.orchestrator"

    def test_get_logger_keeps_prefixed_name(self) -> None:
        """Test that module names are kept as they are."""
        assert get_logger("selfswap.updates.operations").name == (
            "selfswap.updates.operations"
        )

    def test_create_application_log_file(self) -> None:
        """Test that a new empty log file is created."""
        path = create_application_log_file()
        try:
            assert path.is_file()
            assert path.read_text() == ""
            assert path.suffix == ".log"
        finally:
            path.unlink()
