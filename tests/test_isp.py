"""Tests for ISP fuse synchronisation and flash programming."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from tinyburn.avr_tool import AvrdudeCommandError
from tinyburn.chips import load_registry
from tinyburn.isp import (
    FuseWriteError,
    bytes_to_fuse_values,
    fuse_values_to_bytes,
    identify_isp,
    normalize_fuse_targets,
    program_isp,
    sync_fuses,
)

HEX_TEXT = ":0B0010006164647265737320676170A7\n:00000001FF\n"
TARGETS = {"lfuse": 0x62, "hfuse": 0xDF, "efuse": 0xFF}


@pytest.fixture
def tool():
    tool = MagicMock()
    tool.programmer_id = "avrispmkII"
    tool.read_fuses.return_value = {"lfuse": 0x60, "hfuse": 0xDF, "efuse": 0xFF}
    tool.write_fuse.return_value = ("", 0)
    tool.flash_firmware.return_value = ("", 0)
    return tool


class TestFuseTargets:
    def test_aliases(self):
        assert normalize_fuse_targets({"low": 0x62, "H": 0xDF, "ext": 0x1FF}) == {
            "lfuse": 0x62,
            "hfuse": 0xDF,
            "efuse": 0xFF,
        }

    def test_unknown_fuse(self):
        with pytest.raises(ValueError):
            normalize_fuse_targets({"lock": 0x00})

    def test_byte_conversion(self):
        assert fuse_values_to_bytes(TARGETS) == (0x62, 0xDF, 0xFF)
        assert bytes_to_fuse_values((0x62, 0xDF, 0xFF)) == TARGETS


class TestSyncFuses:
    def test_writes_only_changed_fuse(self, tool, caplog):
        caplog.set_level("INFO")
        result = sync_fuses(tool, {"low": 0x62, "high": 0xDF, "ext": 0xFF})

        tool.write_fuse.assert_called_once_with("lfuse", 0x62)
        assert result.written == {"lfuse": 0x62}
        assert result.unchanged == {"hfuse": 0xDF, "efuse": 0xFF}
        assert "Fuse hfuse already set correctly, so left unchanged" in caplog.text
        assert "Fuse efuse already set correctly, so left unchanged" in caplog.text

    def test_nothing_to_write(self, tool):
        result = sync_fuses(tool, {"lfuse": 0x60, "hfuse": 0xDF, "efuse": 0xFF})
        tool.write_fuse.assert_not_called()
        assert result.written == {}

    def test_uses_given_current_values(self, tool):
        sync_fuses(tool, TARGETS, current={"lfuse": 0x62, "hfuse": 0x5F, "efuse": 0xFF})
        tool.read_fuses.assert_not_called()
        tool.write_fuse.assert_called_once_with("hfuse", 0xDF)

    def test_write_order(self, tool):
        sync_fuses(tool, TARGETS, current={"lfuse": 0, "hfuse": 0, "efuse": 0})
        assert [c.args[0] for c in tool.write_fuse.call_args_list] == ["lfuse", "hfuse", "efuse"]

    def test_failed_write_aborts(self, tool):
        tool.write_fuse.side_effect = [("", 0), ("verification error", 1)]
        with pytest.raises(FuseWriteError) as excinfo:
            sync_fuses(tool, TARGETS, current={"lfuse": 0, "hfuse": 0, "efuse": 0})

        assert excinfo.value.fuse == "hfuse"
        assert excinfo.value.value == 0xDF
        assert excinfo.value.detail == "verification error"
        assert tool.write_fuse.call_count == 2


class TestProgramIsp:
    def test_fuses_then_flash(self, tool):
        written = []

        def flash(path):
            written.append(Path(path).read_text())
            return "", 0

        tool.flash_firmware.side_effect = flash

        result = program_isp(tool, HEX_TEXT, TARGETS)

        assert result.written == {"lfuse": 0x62}
        assert written == [HEX_TEXT]
        assert tool.method_calls[0][0] == "read_fuses"

    def test_partial_fuses_not_programmed(self, tool, caplog):
        caplog.set_level("INFO")
        assert program_isp(tool, HEX_TEXT, {"lfuse": 0x62}) is None
        tool.read_fuses.assert_not_called()
        tool.flash_firmware.assert_called_once()
        assert "Fuses not programmed" in caplog.text

    def test_flash_failure(self, tool):
        tool.flash_firmware.return_value = ("programmer not responding", 1)
        with pytest.raises(AvrdudeCommandError) as excinfo:
            program_isp(tool, HEX_TEXT)
        assert excinfo.value.stderr == "programmer not responding"

    def test_fuse_failure_skips_flash(self, tool):
        tool.write_fuse.return_value = ("error", 1)
        with pytest.raises(FuseWriteError):
            program_isp(tool, HEX_TEXT, TARGETS)
        tool.flash_firmware.assert_not_called()


def test_identify_isp(tool):
    tool.read_signature.return_value = "1E930B"
    assert identify_isp(tool, load_registry(include_local=False)) == ("1E930B", "attiny85")


def test_identify_unknown_part(tool):
    tool.read_signature.return_value = "1E950F"
    assert identify_isp(tool, load_registry(include_local=False)) == ("1E950F", "unknown")
