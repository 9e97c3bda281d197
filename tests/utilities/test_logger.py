"""
Tests for the structured logging setup.
"""

import json
import logging

import structlog

from utilities.logger import get_logger, redact_sensitive, setup_logging


def test_redact_sensitive():
    event = redact_sensitive(None, "info", {
        "event": "User registered",
        "email": "a@example.com",
        "password": "hunter22",
        "Token": "abc.def.ghi",
    })
    assert event == {
        "event": "User registered",
        "email": "a@example.com",
        "password": "***",
        "Token": "***",
    }


def test_setup_logging_writes_json_file(tmp_path):
    log_file = tmp_path / "logs" / "api.log"
    setup_logging(log_level="INFO", log_format="json", log_file=str(log_file))
    try:
        get_logger("tests").info("Login rejected", email="a@example.com", password="hunter22")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = [json.loads(line) for line in log_file.read_text().splitlines() if line.startswith("{")]
        event = next(line for line in lines if line["event"] == "Login rejected")
        assert event["email"] == "a@example.com"
        assert event["password"] == "***"
        assert event["level"] == "info"
    finally:
        root = logging.getLogger()
        for handler in list(root.handlers):
            if isinstance(handler, logging.FileHandler):
                root.removeHandler(handler)
                handler.close()
        structlog.reset_defaults()
