"""Tests for the avrdude wrapper."""

from pathlib import Path
from unittest.mock import patch

import pytest

from tinyburn.avr_tool import (
    Avrdude,
    AvrdudeCommandError,
    AvrdudeConfigNotFoundError,
    AvrdudeNotFoundError,
)

VERSION_OUTPUT = ("avrdude version 7.2, URL: <https://github.com/avrdudes/avrdude>\n", 1)


def make_avrdude(version_output=VERSION_OUTPUT, programmer_id="avrispmkII", **kwargs):
    with patch("tinyburn.avr_tool.which", return_value="/usr/bin/avrdude"), patch.object(
        Avrdude, "_execute_command", return_value=version_output
    ):
        return Avrdude("t85", programmer_id, **kwargs)


def write_read_results(values):
    """A fake _execute_command that answers '-U name:r:path:h' reads with values."""

    def execute(options):
        for i, option in enumerate(options):
            if option == "-U":
                name, rest = options[i + 1].split(":", 1)
                path = rest[2:-2]
                Path(path).write_text(values[name] + "\n")
        return "", 0

    return execute


class TestSetup:
    def test_version(self):
        avrdude = make_avrdude()
        assert avrdude.command == "/usr/bin/avrdude"
        assert avrdude.version == 7.2
        assert avrdude.config is None

    def test_not_found(self):
        with patch("tinyburn.avr_tool.which", return_value=None):
            with pytest.raises(AvrdudeNotFoundError):
                Avrdude("t85", "avrispmkII")

    def test_old_version_needs_config(self):
        with pytest.raises(AvrdudeConfigNotFoundError):
            make_avrdude(("avrdude version 6.3\n", 1))

    def test_config_path(self, tmp_path):
        (tmp_path / "avrdude.conf").write_text("")
        avrdude = make_avrdude(("avrdude version 6.3\n", 1), avrdude_config_path=str(tmp_path))
        assert avrdude.config == tmp_path / "avrdude.conf"

    def test_unknown_version(self):
        assert make_avrdude(("usage: avrdude\n", 1)).version is None


class TestBuildOptions:
    def test_usb_programmer(self):
        assert make_avrdude().build_options() == ["-P", "usb", "-c", "avrispmkII", "-p", "t85"]

    def test_serial_programmer(self):
        avrdude = make_avrdude(programmer_id="arduino", port="/dev/ttyACM0", verbose=True)
        assert avrdude.build_options(["-U", "x"]) == [
            "-v",
            "-P",
            "/dev/ttyACM0",
            "-b",
            "19200",
            "-c",
            "arduino",
            "-p",
            "t85",
            "-U",
            "x",
        ]

    def test_serial_programmer_needs_port(self):
        with pytest.raises(AvrdudeCommandError):
            make_avrdude(programmer_id="arduino").build_options()


class TestCommands:
    def test_read_fuses(self):
        avrdude = make_avrdude()
        values = {"lfuse": "0x62", "hfuse": "0xdf", "efuse": "0xff"}
        with patch.object(avrdude, "_execute_command", side_effect=write_read_results(values)):
            assert avrdude.read_fuses() == {"lfuse": 0x62, "hfuse": 0xDF, "efuse": 0xFF}

    def test_read_fuses_failure(self):
        avrdude = make_avrdude()
        with patch.object(avrdude, "_execute_command", return_value=("no programmer", 1)):
            with pytest.raises(AvrdudeCommandError):
                avrdude.read_fuses()

    def test_write_fuse(self):
        avrdude = make_avrdude()
        with patch.object(avrdude, "_execute_command", return_value=("", 0)) as execute:
            assert avrdude.write_fuse("lfuse", 0x62) == ("", 0)
        execute.assert_called_once_with(
            ["-P", "usb", "-c", "avrispmkII", "-p", "t85", "-U", "lfuse:w:0x62:m"]
        )

    def test_read_signature(self):
        avrdude = make_avrdude()
        values = {"signature": "0x1e,0x93,0xb"}
        with patch.object(avrdude, "_execute_command", side_effect=write_read_results(values)):
            assert avrdude.read_signature() == "1E930B"

    def test_flash_firmware(self):
        avrdude = make_avrdude()
        with patch.object(avrdude, "_execute_command", return_value=("", 0)) as execute:
            avrdude.flash_firmware("/tmp/code.hex")
        assert execute.call_args.args[0][-2:] == ["-U", "flash:w:/tmp/code.hex:i"]
