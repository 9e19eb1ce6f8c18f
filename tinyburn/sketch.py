"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Programmer Sketch Generator Module

Fills an Arduino sketch template with a code image so the sketch can
program TPI parts on its own. The template marks the insertion points with
/*[CODE]*/, /*[FUSE]*/, /*[NAME]*/ and /*[PARMS]*/.
"""

import logging
from pathlib import Path
from typing import Iterable

from tinyburn.hexfile import CodeImage
from tinyburn.utils import hex_char

logger = logging.getLogger("Sketch")


def format_code_array(data: bytes) -> str:
    parts = []
    for i, byte in enumerate(data):
        if (i & 0x0F) == 0:
            parts.append("\n  " if i == 0 else ",\n  ")
        else:
            parts.append(", ")
        parts.append(f"0x{byte:02X}")
    return "".join(parts)


def format_exported_parms(lines: Iterable[str]) -> str:
    """
    Formats 'name:address:type' declarations as the name's characters, a
    zero terminator, the type and the hex address as high and low byte.
    """
    entries = []
    for line in lines:
        parts = line.split(":")
        if len(parts) != 3:
            logger.warning(f"Ignoring exported parameter '{line}'")
            continue
        name, address, kind = parts
        add = int(address, 16)
        chars = "".join(f"'{c}'," for c in name)
        entries.append(
            f"{chars}0,{kind},0x{hex_char(add >> 12)}{hex_char(add >> 8)},"
            f"0x{hex_char(add >> 4)}{hex_char(add)}"
        )
    if not entries:
        return ""
    return "\n  " + ",\n  ".join(entries) + "\n"


def generate_sketch(template: str, image: CodeImage, name: str, parms: Iterable[str] = ()) -> str:
    return (
        template.replace("/*[CODE]*/", format_code_array(image.data))
        .replace("/*[FUSE]*/", hex_char(image.fuses))
        .replace("/*[NAME]*/", name)
        .replace("/*[PARMS]*/", format_exported_parms(parms))
    )


def sketch_path(source_file) -> Path:
    """'blink.c' -> 'blink-prog.ino'"""
    path = Path(source_file)
    return path.with_name(f"{path.stem}-prog.ino")
