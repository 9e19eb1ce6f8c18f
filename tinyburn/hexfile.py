"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Intel HEX Module

Reads the Intel HEX text produced by the AVR toolchain into a flat code
image. Besides the standard ':' records the text may carry one extra line,
'*' followed by a single hex digit, holding the fuse nibble for TPI parts.
Only data records are applied, so the image covers a flat address space of
at most 64 KiB.
"""

import io
import logging
from dataclasses import dataclass
from typing import Optional

from intelhex import IntelHex

from tinyburn.constants import DEFAULT_FUSE_NIBBLE, MAX_IMAGE_SIZE
from tinyburn.utils import hex_char

logger = logging.getLogger("HexFile")

MIN_RECORD_LENGTH = 11
RECORD_OVERHEAD = 5
DATA_RECORD = 0x00


class ParseError(Exception):
    """Base class for Intel HEX parsing errors."""

    pass


class ChecksumError(ParseError):
    """A record's bytes did not sum to zero."""

    def __init__(self, line: str, line_number: int):
        super().__init__(f"Invalid checksum in HEX file, record {line_number}: {line}")
        self.line = line
        self.line_number = line_number


@dataclass(frozen=True)
class CodeImage:
    data: bytes = b""
    fuses: int = DEFAULT_FUSE_NIBBLE

    def __len__(self):
        return len(self.data)


def _decode_record(line: str) -> Optional[bytes]:
    digits = line[1:]
    if len(digits) % 2:
        digits = digits[:-1]
    try:
        return bytes.fromhex(digits)
    except ValueError:
        return None


def parse_intel_hex(text: str) -> CodeImage:
    """
    Parses Intel HEX text into a CodeImage.

    Data records are written at their load address and the image grows to
    the highest address written; gaps are zero filled. Records of any other
    type and records that can't be decoded are skipped.

    Raises:
        ChecksumError: If the bytes of a data record, including any after
            the checksum, don't sum to zero. No image is returned.
        ParseError: If a data record ends above address 0xFFFF.
    """
    fuses = DEFAULT_FUSE_NIBBLE
    buf = bytearray()
    for line_number, line in enumerate(text.split(), start=1):
        if line.startswith(":") and len(line) >= MIN_RECORD_LENGTH:
            record = _decode_record(line)
            if record is None or len(record) < RECORD_OVERHEAD:
                logger.debug(f"Skipping malformed record {line_number}: {line}")
                continue
            count = record[0]
            address = (record[1] << 8) | record[2]
            if record[3] != DATA_RECORD:
                continue
            if len(record) < count + RECORD_OVERHEAD:
                logger.debug(f"Skipping truncated record {line_number}: {line}")
                continue
            if sum(record) & 0xFF:
                raise ChecksumError(line, line_number)
            end = address + count
            if end > MAX_IMAGE_SIZE:
                raise ParseError(
                    f"HEX record {line_number} runs past the 64 KiB address space: {line}"
                )
            if end > len(buf):
                buf.extend(bytes(end - len(buf)))
            buf[address:end] = record[4 : 4 + count]
        elif line.startswith("*") and len(line) == 2:
            try:
                fuses = int(line[1], 16) & 0x0F
            except ValueError:
                logger.debug(f"Ignoring invalid fuse marker: {line}")
    return CodeImage(bytes(buf), fuses)


def render_intel_hex(image: CodeImage, record_size: int = 16) -> str:
    """
    Renders a CodeImage as Intel HEX text: the fuse marker line followed by
    checksummed data records and the end-of-file record.
    """
    if len(image.data) > MAX_IMAGE_SIZE:
        raise ValueError(
            f"Image of {len(image.data)} bytes exceeds the {MAX_IMAGE_SIZE} byte address space"
        )
    ih = IntelHex()
    ih.frombytes(image.data)
    out = io.StringIO()
    ih.write_hex_file(out, write_start_addr=False, eolstyle="native", byte_count=record_size)
    return f"*{hex_char(image.fuses)}\n" + out.getvalue()


def load_hex_file(path) -> str:
    """Reads an Intel HEX file and validates it, returning the text unchanged."""
    with open(path, "rt") as file:
        text = file.read()
    parse_intel_hex(text)
    return text
