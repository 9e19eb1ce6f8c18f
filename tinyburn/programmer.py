"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

TPI Programmer Commands Module
"""

import logging
from typing import Optional

from tinyburn.constants import (
    COMMAND_CALIBRATE,
    COMMAND_DOWNLOAD,
    COMMAND_FUSE,
    COMMAND_POWER_OFF,
    COMMAND_POWER_ON,
    COMMAND_SIGNATURE,
    HEX_EOF_RECORD,
)
from tinyburn.fuses import parse_fuse_response
from tinyburn.hexfile import parse_intel_hex
from tinyburn.protocol import ProtocolEngine, Session
from tinyburn.utils import format_size, hex_char

logger = logging.getLogger("Programmer")


def build_download(hex_text: str, fuses: Optional[int] = None, trailer: str = "") -> str:
    """
    Frames a code download: 'D', an optional '*X' fuse override, the HEX
    records and the end of file record.
    """
    lines = [line for line in hex_text.split() if line]
    if fuses is not None:
        lines = [f"*{hex_char(fuses)}"] + [line for line in lines if not line.startswith("*")]
    if HEX_EOF_RECORD not in (line.upper() for line in lines):
        lines.append(HEX_EOF_RECORD)
    return f"\n{COMMAND_DOWNLOAD}\n" + "\n".join(lines) + "\n" + trailer


class TpiProgrammer:
    """
    Commands understood by the TPI programmer sketch. Commands that report
    a value block for the response; commands whose effect is on the device
    (download, fuse write, calibration, power) run in the background and
    return their Session.
    """

    def __init__(self, engine: ProtocolEngine):
        self.engine = engine

    def upload(self, hex_text: str, fuses: Optional[int] = None) -> Session:
        """Validates the HEX text and downloads it, with an optional fuse override."""
        image = parse_intel_hex(hex_text)
        logger.info(f"Sending {format_size(len(image))} of code to the programmer.")
        return self.engine.send(build_download(hex_text, fuses))

    def read_fuse(self) -> int:
        response = self.engine.query(f"{COMMAND_FUSE}\n")
        fuse = parse_fuse_response(response)
        logger.debug(f"Fuse byte: 0x{fuse:02X}")
        return fuse

    def write_fuse(self, fuse: int) -> Session:
        """Programs the fuse byte with an empty download carrying only the fuse override."""
        logger.info(f"Writing fuse 0x{fuse & 0x0F:X}")
        return self.engine.send(build_download("", fuse))

    def read_signature(self) -> str:
        """Returns the programmer's signature and fuse report."""
        return self.engine.query(f"{COMMAND_SIGNATURE}\n")

    def calibrate(self, clock_hex: str) -> Session:
        """Downloads the clock calibration code and runs it."""
        parse_intel_hex(clock_hex)
        return self.engine.send(build_download(clock_hex, trailer=f"{COMMAND_CALIBRATE}\n"))

    def power_on(self) -> Session:
        return self.engine.send(f"{COMMAND_POWER_ON}\n")

    def power_off(self) -> Session:
        return self.engine.send(f"{COMMAND_POWER_OFF}\n")
