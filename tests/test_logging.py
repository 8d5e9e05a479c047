"""
tests/test_logging.py -- Tests for core/logging.py.

Covers:
  - JSON rendering: extra= fields become top-level keys next to event,
    level, logger, and timestamp
  - Console rendering in development includes the event text
  - configure_logging(): development writes synchronously; other
    environments go through a QueueHandler
  - Reconfiguring replaces only our handler; shutdown_logging() removes it
  - Root level follows LOG_LEVEL
  - Queued JSON output keeps the exception key and follows sys.stderr swaps
"""

from __future__ import annotations

import io
import json
import logging
import sys
from logging.handlers import QueueHandler

import pytest

from core import logging as homebase_logging
from core.config import Settings


def _settings(tmp_path, **overrides) -> Settings:
    values = {"database_url": f"sqlite:///{tmp_path / 'log.db'}", "secret_key": "l" * 40, **overrides}
    return Settings(**values)


def _record(msg: str = "ENTER", **extra) -> logging.LogRecord:
    record = logging.LogRecord("homebase.request", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root(monkeypatch, tmp_path):
    """Undo configure_logging() side effects on the root logger."""
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    level = root.level
    yield root
    homebase_logging.shutdown_logging()
    root.setLevel(level)


class TestFormatter:
    def test_json_includes_extra_fields(self) -> None:
        formatter = homebase_logging._build_formatter(pretty=False)
        line = formatter.format(_record(request_id="abc-1", method="GET", url="/"))
        event = json.loads(line)
        assert event["event"] == "ENTER"
        assert event["request_id"] == "abc-1"
        assert event["method"] == "GET"
        assert event["url"] == "/"
        assert event["level"] == "info"
        assert event["logger"] == "homebase.request"
        assert "timestamp" in event

    def test_json_renders_exceptions(self) -> None:
        formatter = homebase_logging._build_formatter(pretty=False)
        try:
            raise ValueError("kaboom")
        except ValueError:
            record = _record("failed")
            record.exc_info = sys.exc_info()
        event = json.loads(formatter.format(record))
        assert "kaboom" in event["exception"]

    def test_console_includes_event(self) -> None:
        formatter = homebase_logging._build_formatter(pretty=True)
        line = formatter.format(_record("EXIT", duration=12))
        assert "EXIT" in line
        assert "duration" in line


class TestConfigureLogging:
    def test_development_is_synchronous(self, restore_root, tmp_path) -> None:
        homebase_logging.configure_logging(_settings(tmp_path, node_env="development"))
        handler = homebase_logging._installed_handler
        assert handler in restore_root.handlers
        assert not isinstance(handler, QueueHandler)
        assert homebase_logging._listener is None

    def test_production_is_queued(self, restore_root, tmp_path) -> None:
        homebase_logging.configure_logging(_settings(tmp_path, node_env="production"))
        assert isinstance(homebase_logging._installed_handler, QueueHandler)
        assert homebase_logging._listener is not None

    def test_reconfigure_replaces_own_handler_only(self, restore_root, tmp_path) -> None:
        foreign = logging.NullHandler()
        restore_root.addHandler(foreign)
        try:
            homebase_logging.configure_logging(_settings(tmp_path, node_env="test"))
            first = homebase_logging._installed_handler
            homebase_logging.configure_logging(_settings(tmp_path, node_env="test"))
            assert first not in restore_root.handlers
            assert homebase_logging._installed_handler in restore_root.handlers
            assert foreign in restore_root.handlers
        finally:
            restore_root.removeHandler(foreign)

    def test_shutdown_removes_handler(self, restore_root, tmp_path) -> None:
        homebase_logging.configure_logging(_settings(tmp_path, node_env="test"))
        handler = homebase_logging._installed_handler
        homebase_logging.shutdown_logging()
        assert handler not in restore_root.handlers
        assert homebase_logging._installed_handler is None
        assert homebase_logging._listener is None

    def test_level_follows_settings(self, restore_root, tmp_path) -> None:
        homebase_logging.configure_logging(_settings(tmp_path, node_env="test", log_level="warn"))
        assert restore_root.level == logging.WARNING


class TestQueuedOutput:
    def test_exception_key_survives_the_queue(self, restore_root, tmp_path, monkeypatch) -> None:
        out = io.StringIO()
        monkeypatch.setattr(sys, "stderr", out)
        homebase_logging.configure_logging(_settings(tmp_path, node_env="test"))
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logging.getLogger("homebase.test").exception("request failed")
        homebase_logging.shutdown_logging()

        event = json.loads(out.getvalue().strip().splitlines()[-1])
        assert event["event"] == "request failed"
        assert "RuntimeError: boom" in event["exception"]
        assert "message" not in event

    def test_writes_to_current_stderr(self, restore_root, tmp_path, monkeypatch) -> None:
        homebase_logging.configure_logging(_settings(tmp_path, node_env="test"))
        swapped = io.StringIO()
        monkeypatch.setattr(sys, "stderr", swapped)
        logging.getLogger("homebase.test").warning("after swap")
        homebase_logging.shutdown_logging()

        assert json.loads(swapped.getvalue().strip().splitlines()[-1])["event"] == "after swap"
