"""Tests for logging configuration."""

import logging
import sys

import pytest
import structlog

from sdjournal.connection import Connection
from sdjournal.fields import Priority
from sdjournal.store import get_store
from sdjournal.utils.config import reset_config
from sdjournal.utils.logging import configure_logging, get_logger
from sdjournal.writer import JournalWriter


@pytest.fixture
def restore_logging():
    yield
    logging.basicConfig(stream=sys.stderr, force=True)
    structlog.reset_defaults()


class TestConfigureLogging:
    """Test routing application logs."""

    def test_log_to_journal(self, restore_logging):
        """Test structured logs land in the journal as entries."""
        configure_logging(log_level="INFO", log_format="console", log_output="journal")

        assert any(
            isinstance(getattr(handler, "stream", None), JournalWriter)
            for handler in logging.getLogger().handlers
        )

        logger = get_logger("tests.journal")
        logger.warning("Disk almost full", mount="/var", free_pct=3)

        with Connection.open(store=get_store()) as conn:
            conn.seek_head()
            assert conn.next() == 1
            entry = conn.read_entry()

        assert entry.message == "Disk almost full"
        assert entry.priority == Priority.WARNING
        assert entry.fields["MOUNT"] == "/var"
        assert entry.fields["FREE_PCT"] == "3"
        assert entry.fields["APP"] == "sdjournal"
        assert entry.fields["LOGGER"] == "tests.journal"

    def test_log_to_stdout(self, restore_logging, capsys):
        """Test the default JSON output."""
        configure_logging(log_level="INFO", log_output="stdout")

        get_logger("tests.stdout").info("Opened journal", backend="memory")

        out = capsys.readouterr().out
        assert '"event": "Opened journal"' in out
        assert '"backend": "memory"' in out

    def test_defaults_from_config(self, restore_logging, monkeypatch, capsys):
        """Test level and format default to the configured values."""
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LOG_FORMAT", "console")
        reset_config()

        configure_logging(log_output="stdout")
        get_logger("tests.config").debug("Debug enabled", backend="memory")

        assert logging.getLogger().level == logging.DEBUG
        out = capsys.readouterr().out
        assert "Debug enabled" in out
        assert '"event"' not in out
