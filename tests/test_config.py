"""Tests for the settings file, console helpers and number parsing."""

import io
import json
import logging

import pytest

from tinyburn.config import ConfigManager, get_local_chips
from tinyburn.logging_utils import SingleLineStatusHandler, TraceWriter
from tinyburn.utils import format_size, hex_char, is_printable, parse_number


class TestConfigManager:
    def test_set_and_reload(self, home):
        config = ConfigManager()
        config.set_value("port", "/dev/ttyUSB0")

        saved = json.loads((home / "config.json").read_text())
        assert saved == {"port": "/dev/ttyUSB0"}

        ConfigManager._instances.clear()
        ConfigManager._initialized_configs.clear()
        assert ConfigManager().get_value("port") == "/dev/ttyUSB0"

    def test_singleton(self, home):
        assert ConfigManager() is ConfigManager()
        assert ConfigManager() is not ConfigManager("other.json")

    def test_set_none_removes(self, home):
        config = ConfigManager()
        config.set_value("chip", "attiny10")
        config.set_value("chip", None)
        assert config.get_value("chip", "default") == "default"
        assert config.list_all() == {}

    def test_invalid_file_resets(self, home, caplog):
        (home / "config.json").write_text("{not json")
        assert ConfigManager().list_all() == {}
        assert "not a valid JSON" in caplog.text


class TestLocalChips:
    def test_missing(self, home):
        assert get_local_chips() is None

    def test_loaded(self, home):
        (home / "chips.json").write_text('{"attiny13": {"protocol": "ISP"}}')
        assert get_local_chips() == {"attiny13": {"protocol": "ISP"}}

    def test_invalid(self, home):
        (home / "chips.json").write_text("[")
        assert get_local_chips() is None


class TestUtils:
    @pytest.mark.parametrize("text, value", [("98", 98), ("0x62", 0x62), ("0XdF", 0xDF), (" 7 ", 7), (5, 5)])
    def test_parse_number(self, text, value):
        assert parse_number(text) == value

    @pytest.mark.parametrize("text", ["", "0x", "62h", "-1", "0b101"])
    def test_parse_number_invalid(self, text):
        with pytest.raises(ValueError):
            parse_number(text)

    def test_hex_char(self):
        assert hex_char(0x0B) == "B"
        assert hex_char(0xF3) == "3"

    def test_is_printable(self):
        assert is_printable(ord("A"))
        assert is_printable(0x0A)
        assert not is_printable(0x0D)
        assert not is_printable(0x06)
        assert not is_printable(0x7F)

    def test_format_size(self):
        assert format_size(512) == "512 B"
        assert format_size(2048) == "2.00 KB"


class TestConsole:
    def test_trace_line_ending(self):
        stream = io.StringIO()
        trace = TraceWriter(stream)
        trace("Fuse: 0xFE")
        trace.end_line()
        trace.end_line()
        assert stream.getvalue() == "Fuse: 0xFE\n"

    def test_log_record_starts_new_line(self):
        stream = io.StringIO()
        trace = TraceWriter(stream)
        handler = SingleLineStatusHandler(stream, trace)
        logger = logging.getLogger("tinyburn-test-console")
        logger.addHandler(handler)
        logger.propagate = False
        try:
            trace("OK")
            logger.warning("Done")
            logger.warning("Reading", extra={"status": "start"})
            logger.warning("Reading done", extra={"status": "end"})
        finally:
            logger.removeHandler(handler)

        assert stream.getvalue() == "OK\nDone\nReading\rReading done\n"
