"""
Tests for logging setup
"""

import json
import logging

import pytest

from greensched import logging as gs_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(gs_logging._configured_handlers):
        root.removeHandler(handler)
        handler.close()
    gs_logging._configured_handlers.clear()
    root.setLevel(level)


class TestSetupLogging:
    def test_repeat_calls_do_not_duplicate_handlers(self):
        root = logging.getLogger()
        before = len(root.handlers)

        gs_logging.setup_logging()
        gs_logging.setup_logging()

        assert len(root.handlers) == before + 1

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        gs_logging.setup_logging()
        assert logging.getLogger("greensched").level == logging.DEBUG

    def test_invalid_level_defaults_to_info(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        gs_logging.setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_json_file_handler(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "INFO")
        gs_logging.setup_logging(tmp_path)

        logging.getLogger("greensched.test").info("ledger ready")
        for handler in gs_logging._configured_handlers:
            handler.flush()

        lines = (tmp_path / "greensched.log").read_text().strip().splitlines()
        record = json.loads(lines[-1])
        assert record["message"] == "ledger ready"
        assert record["levelname"] == "INFO"
        assert record["name"] == "greensched.test"
