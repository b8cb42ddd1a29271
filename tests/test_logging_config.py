"""
tests/test_logging_config.py - Two-channel logging
"""

import logging

import pytest

from core.logging_config import MainLogFilter, event_name, setup_logging


def _record(level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord("backtesting.test", level, __file__, 1, msg, None, None)


def test_event_name_parses_first_event_token():
    assert event_name("event=trade_closed id=3 reason=stop_loss") == "trade_closed"
    assert event_name("balance=10 event=live_reset") == "live_reset"
    assert event_name("no structured fields here") is None


class TestMainLogFilter:

    def test_warnings_always_pass(self):
        assert MainLogFilter().filter(_record(logging.WARNING, "anything"))

    def test_whitelisted_info_passes(self):
        assert MainLogFilter().filter(_record(logging.INFO, "event=trade_closed id=1"))

    def test_other_info_and_debug_blocked(self):
        f = MainLogFilter()
        assert not f.filter(_record(logging.INFO, "event=entry_rejected reason=hold"))
        assert not f.filter(_record(logging.DEBUG, "event=trade_closed id=1"))

    def test_substring_of_whitelisted_event_does_not_match(self):
        assert not MainLogFilter().filter(_record(logging.INFO, "event=trade_closed_partial id=1"))


class TestSetupLogging:

    @pytest.fixture
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_channels(self, tmp_path, restore_root):
        main_log = tmp_path / "logs" / "main.log"
        debug_log = tmp_path / "logs" / "debug.log"
        setup_logging(
            level="DEBUG",
            console_output=False,
            main_log_file=str(main_log),
            debug_log_file=str(debug_log),
        )
        log = logging.getLogger("backtesting.position_manager")
        log.info("event=trade_opened id=1")
        log.info("event=mark step=3")
        log.debug("event=entry_rejected reason=hold")
        for handler in logging.getLogger().handlers:
            handler.flush()

        main_text = main_log.read_text()
        debug_text = debug_log.read_text()
        assert "event=trade_opened" in main_text
        assert "event=mark" not in main_text
        assert "event=entry_rejected" in debug_text
        assert "backtesting.position_manager" in debug_text
