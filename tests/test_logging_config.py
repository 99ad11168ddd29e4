"""Tests for root logger configuration."""
import json
import logging

import pytest

from matchmaker.logging_config import setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def last_line(capsys):
    return capsys.readouterr().out.strip().splitlines()[-1]


class TestSetupLogging:

    def test_json_lines_carry_extra_fields(self, capsys):
        setup_logging(level="INFO", fmt="json")

        logging.getLogger("matchmaker.jobs").info("Queued embedding job", extra={"user_id": "alice"})

        record = json.loads(last_line(capsys))
        assert record["event"] == "Queued embedding job"
        assert record["level"] == "info"
        assert record["logger"] == "matchmaker.jobs"
        assert record["user_id"] == "alice"
        assert "timestamp" in record
        assert "_record" not in record

    def test_json_includes_tracebacks(self, capsys):
        setup_logging(level="INFO", fmt="json")

        try:
            raise RuntimeError("provider down")
        except RuntimeError:
            logging.getLogger("matchmaker.intros").exception("Notification failed")

        record = json.loads(last_line(capsys))
        assert record["level"] == "error"
        assert "RuntimeError: provider down" in record["exception"]

    def test_text_format_and_level(self, capsys):
        setup_logging(level="WARNING", fmt="text")
        logger = logging.getLogger("matchmaker.api")

        logger.info("hidden")
        logger.warning("shown")

        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "WARNING  matchmaker.api: shown" in out
        assert len(logging.getLogger().handlers) == 1
