"""Tests for logger.py: setup_logging() and JsonFormatter.

Strategy: mock logging.basicConfig to verify setup_logging passes the
right handlers, since pytest's log capture interferes with real calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from vcs_mirror.logger import DEFAULT_LOG_FILE, JsonFormatter, setup_logging


def handlers_of(mock_basic):
    return mock_basic.call_args[1]["handlers"]


class TestSetupLogging:
    @patch("vcs_mirror.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr_only(self, mock_basic):
        setup_logging(mode="cli")

        mock_basic.assert_called_once()
        handlers = handlers_of(mock_basic)
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr
        assert mock_basic.call_args[1]["force"] is True

    @patch("vcs_mirror.logger.logging.basicConfig")
    def test_daemon_mode_adds_file_handler(self, mock_basic, tmp_path):
        log_file = tmp_path / "mirror.log"
        setup_logging(mode="daemon", log_file=str(log_file))

        handlers = handlers_of(mock_basic)
        assert len(handlers) == 2
        assert isinstance(handlers[1], logging.FileHandler)
        assert handlers[1].baseFilename == str(log_file)
        handlers[1].close()

    @patch("vcs_mirror.logger.logging.FileHandler")
    @patch("vcs_mirror.logger.logging.basicConfig")
    def test_daemon_mode_default_file(self, mock_basic, mock_file, monkeypatch):
        monkeypatch.delenv("LOG_FILE", raising=False)
        setup_logging(mode="daemon")
        mock_file.assert_called_once_with(DEFAULT_LOG_FILE, mode="a")

    @patch("vcs_mirror.logger.logging.FileHandler")
    @patch("vcs_mirror.logger.logging.basicConfig")
    def test_log_file_env_var(self, mock_basic, mock_file, monkeypatch):
        monkeypatch.setenv("LOG_FILE", "/var/log/mirror.log")
        setup_logging(mode="daemon")
        mock_file.assert_called_once_with("/var/log/mirror.log", mode="a")

    @patch("vcs_mirror.logger.logging.basicConfig")
    def test_debug_overrides_level(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("vcs_mirror.logger.logging.basicConfig")
    def test_log_level_env(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.WARNING

    @patch("vcs_mirror.logger.logging.basicConfig")
    def test_invalid_log_level_falls_back_to_info(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "CHATTY")
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("vcs_mirror.logger.logging.basicConfig")
    def test_third_party_silenced(self, mock_basic, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli")
        assert logging.getLogger("dulwich").level == logging.WARNING
        assert logging.getLogger("urllib3").level == logging.WARNING

    @patch("vcs_mirror.logger.logging.basicConfig")
    def test_json_format(self, mock_basic):
        setup_logging(mode="cli", debug_format="json")
        assert isinstance(handlers_of(mock_basic)[0].formatter, JsonFormatter)


class TestJsonFormatter:
    def _record(self, **kwargs):
        return logging.LogRecord(
            name="vcs_mirror.mirror.engine",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Checked in %s as changeset %d",
            args=("abc12345", 42),
            exc_info=kwargs.get("exc_info"),
        )

    def test_fields(self):
        entry = json.loads(JsonFormatter().format(self._record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "vcs_mirror.mirror.engine"
        assert entry["msg"] == "Checked in abc12345 as changeset 42"
        assert "ts" in entry
        assert "exc" not in entry

    def test_exception_included(self):
        try:
            raise RuntimeError("svn exploded")
        except RuntimeError:
            exc_info = sys.exc_info()
        entry = json.loads(JsonFormatter().format(self._record(exc_info=exc_info)))
        assert "svn exploded" in entry["exc"]
