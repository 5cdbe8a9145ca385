"""Unit tests for structured logging configuration."""

import json
import logging

import pytest
import structlog

from core.logger import configure_logging, log_context


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.mark.unit
class TestConfigureLogging:
    def test_json_output_carries_extra_and_context(
        self, monkeypatch, capsys, restore_logging
    ):
        monkeypatch.setenv("LOG_FORMAT", "json")
        configure_logging()

        with log_context(batch_id="batch-1"):
            logging.getLogger("services.export_service").warning(
                "export.degraded", extra={"certificate_id": "abc"}
            )

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "export.degraded"
        assert record["certificate_id"] == "abc"
        assert record["batch_id"] == "batch-1"
        assert record["level"] == "warning"

    def test_context_is_unbound_after_the_block(
        self, monkeypatch, capsys, restore_logging
    ):
        monkeypatch.setenv("LOG_FORMAT", "json")
        configure_logging()

        with log_context(batch_id="batch-1"):
            pass
        logging.getLogger("services.batch_service").warning("batch.completed")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert "batch_id" not in record
        assert structlog.contextvars.get_contextvars() == {}

    def test_log_level_from_environment(self, monkeypatch, restore_logging):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        configure_logging()
        assert logging.getLogger().level == logging.ERROR
