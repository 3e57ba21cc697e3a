"""
Unit tests for logger.py: JSON log lines and Sentry start-up.
"""

import json
import logging
import sys
from unittest.mock import MagicMock, patch

from logger import JsonFormatter, init_sentry, setup_logging


def make_record(msg, *args, exc_info=None):
    return logging.LogRecord("pin_actions", logging.INFO, __file__, 1, msg, args, exc_info)


class TestJsonFormatter:

    def test_quotes_and_backslashes_stay_valid_json(self):
        record = make_record("created pin %s: '%s'", 1, 'say "hi" C:\\tmp')

        entry = json.loads(JsonFormatter().format(record))

        assert entry["message"] == 'created pin 1: \'say "hi" C:\\tmp\''
        assert entry["level"] == "INFO"
        assert entry["name"] == "pin_actions"
        assert "time" in entry

    def test_multiline_message_is_one_line(self):
        line = JsonFormatter().format(make_record("first\nsecond"))
        assert "\n" not in line
        assert json.loads(line)["message"] == "first\nsecond"

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record("failed", exc_info=sys.exc_info())

        entry = json.loads(JsonFormatter().format(record))
        assert "ValueError: boom" in entry["exc_info"]

    def test_setup_logging_installs_json_formatter(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        try:
            setup_logging("DEBUG", "json")
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
            assert root.level == logging.DEBUG
        finally:
            root.handlers[:] = handlers
            root.setLevel(level)


class TestInitSentry:

    def test_disabled_without_dsn(self):
        with patch("logger.sentry_sdk.init") as mock_init:
            assert init_sentry(MagicMock(sentry_dsn=None)) is False
        mock_init.assert_not_called()

    def test_enabled_with_dsn(self):
        settings = MagicMock(
            sentry_dsn="https://key@sentry.example/1",
            sentry_environment="staging",
            sentry_traces_sample_rate=0.25,
            sentry_profiles_sample_rate=0.5,
        )
        with patch("logger.sentry_sdk.init") as mock_init:
            assert init_sentry(settings) is True

        mock_init.assert_called_once_with(
            dsn="https://key@sentry.example/1",
            environment="staging",
            traces_sample_rate=0.25,
            profiles_sample_rate=0.5,
            send_default_pii=True,
        )
