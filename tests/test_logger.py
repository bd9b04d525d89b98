"""Tests for logger.py: setup_logging(), verbosity tiers and JsonFormatter.

Covers:
- Console mode logging (stderr handler, optional file)
- Service mode logging (file handler only)
- Debug level override and LOG_LEVEL handling
- VerbosityFilter and the log() helper
- JSON formatter output

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from remote_mirror.logger import (
    V1,
    V2,
    V3,
    JsonFormatter,
    VerbosityFilter,
    log,
    setup_logging,
)


def _record(level=logging.INFO, verbosity=None, msg="m", args=()):
    record = logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )
    if verbosity is not None:
        record.verbosity = verbosity
    return record


def _close(handlers):
    for h in handlers:
        if isinstance(h, logging.FileHandler):
            h.close()


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_console_mode_logs_to_stderr(self, mock_basic):
        """Console mode passes StreamHandler(stderr) to basicConfig."""
        setup_logging(mode="console")

        mock_basic.assert_called_once()
        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert handlers[0].stream is sys.stderr

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_service_mode_logs_to_file_only(self, mock_basic, tmp_path):
        log_file = str(tmp_path / "svc.log")
        setup_logging(mode="service", log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.FileHandler)
        assert handlers[0].baseFilename == log_file
        _close(handlers)

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_service_mode_log_file_from_env(
        self, mock_basic, tmp_path, monkeypatch
    ):
        log_file = str(tmp_path / "env.log")
        monkeypatch.setenv("LOG_FILE", log_file)
        setup_logging(mode="service")

        handlers = mock_basic.call_args[1]["handlers"]
        assert handlers[0].baseFilename == log_file
        _close(handlers)

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_console_mode_with_log_file(self, mock_basic, tmp_path):
        """Console mode with log_file creates both stderr and file handlers."""
        setup_logging(mode="console", log_file=str(tmp_path / "c.log"))

        handlers = mock_basic.call_args[1]["handlers"]
        file_handlers = [
            h for h in handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(handlers) == 2
        assert len(file_handlers) == 1
        _close(handlers)

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_debug_overrides_level(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_env_log_level_beats_configured_level(
        self, mock_basic, monkeypatch
    ):
        monkeypatch.setenv("LOG_LEVEL", "error")
        setup_logging(level="DEBUG")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_configured_level_used_without_env(self, mock_basic):
        setup_logging(level="warning")
        assert mock_basic.call_args[1]["level"] == logging.WARNING

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_default_level_is_info(self, mock_basic):
        setup_logging()
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        setup_logging(debug_format="json")
        handlers = mock_basic.call_args[1]["handlers"]
        assert isinstance(handlers[0].formatter, JsonFormatter)

    @patch("remote_mirror.logger.logging.basicConfig")
    def test_verbosity_filter_attached(self, mock_basic):
        setup_logging(verbosity=V1)
        handler = mock_basic.call_args[1]["handlers"][0]
        filters = [f for f in handler.filters if isinstance(f, VerbosityFilter)]
        assert len(filters) == 1
        assert filters[0].verbosity == V1


# ---------------------------------------------------------------------------
# Verbosity tiers
# ---------------------------------------------------------------------------


class TestVerbosityFilter:
    def test_records_within_tier_pass(self):
        flt = VerbosityFilter(V2)
        assert flt.filter(_record(verbosity=V1))
        assert flt.filter(_record(verbosity=V2))

    def test_records_above_tier_dropped(self):
        assert not VerbosityFilter(V2).filter(_record(verbosity=V3))

    def test_untagged_records_pass(self):
        assert VerbosityFilter(V1).filter(_record())

    def test_warnings_always_pass(self):
        flt = VerbosityFilter(V1)
        assert flt.filter(_record(level=logging.WARNING, verbosity=V3))
        assert flt.filter(_record(level=logging.ERROR, verbosity=V3))


class TestLogHelper:
    def test_tags_record_with_verbosity(self, caplog):
        logger = logging.getLogger("remote_mirror.test")
        with caplog.at_level(logging.INFO):
            log(logger, logging.INFO, V2, "APPLIED %s", "x.txt")

        assert caplog.records[-1].verbosity == V2
        assert caplog.records[-1].getMessage() == "APPLIED x.txt"


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_output(self):
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        data = json.loads(
            formatter.format(_record(msg="Hello %s", args=("world",)))
        )

        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["msg"] == "Hello world"
        assert "verbosity" not in data

    def test_includes_verbosity(self):
        data = json.loads(JsonFormatter().format(_record(verbosity=V3)))
        assert data["verbosity"] == V3

    def test_includes_exception(self):
        try:
            raise ValueError("test error")
        except ValueError:
            exc_info = sys.exc_info()
        record = _record(level=logging.ERROR)
        record.exc_info = exc_info

        data = json.loads(JsonFormatter().format(record))
        assert "ValueError: test error" in data["exc"]
