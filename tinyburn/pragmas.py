"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Source Pragma Module

Firmware sources declare their target and fuse values with pragmas:

    #pragma chip attiny85
    #pragma lfuse 0x62
    #pragma hfuse 0xDF
    #pragma efuse 0xFF
    #pragma xparm speed:0040:2
"""

import shlex
import logging
from typing import Dict, List, Optional, Tuple

from tinyburn.chips import ChipRegistry
from tinyburn.utils import parse_number

logger = logging.getLogger("Pragmas")

PRAGMA = "#pragma"
FUSE_PRAGMAS = {"lfuse": "lfuse", "hfuse": "hfuse", "efuse": "efuse"}


def parse_pragmas(source: str) -> List[Tuple[str, List[str]]]:
    """Returns (name, arguments) for every pragma up to the last one in source."""
    idx = source.rfind(PRAGMA)
    if idx < 0:
        return []
    end = source.find("\n", idx)
    area = source if end < 0 else source[: end + 1]

    pragmas = []
    for line in area.splitlines():
        comment = line.find("//")
        if comment >= 0:
            line = line[:comment]
        line = line.strip()
        if not line.startswith(PRAGMA):
            continue
        try:
            parts = shlex.split(line[len(PRAGMA):])
        except ValueError as e:
            logger.warning(f"Ignoring malformed pragma '{line}': {e}")
            continue
        if parts:
            pragmas.append((parts[0].lower(), parts[1:]))
    return pragmas


def pragma_value(pragmas, name: str) -> Optional[str]:
    """The first argument of the last pragma called name."""
    value = None
    for key, args in pragmas:
        if key == name and args:
            value = args[0]
    return value


def select_chip(source: str, registry: ChipRegistry) -> Optional[str]:
    """The device named by '#pragma chip', when the registry knows it."""
    for key, args in parse_pragmas(source):
        if key == "chip" and args and args[0] in registry:
            return args[0].lower()
    return None


def declared_fuses(pragmas) -> Optional[Dict[str, int]]:
    """The lfuse/hfuse/efuse targets when all three are declared, else None."""
    fuses = {}
    for name in FUSE_PRAGMAS:
        value = pragma_value(pragmas, name)
        if value is None:
            return None
        try:
            fuses[FUSE_PRAGMAS[name]] = parse_number(value) & 0xFF
        except ValueError:
            logger.warning(f"Invalid {name} value in pragma: {value}")
            return None
    return fuses


def exported_parms(pragmas) -> List[str]:
    """The 'name:address:type' arguments of every '#pragma xparm'."""
    return [args[0] for key, args in pragmas if key == "xparm" and args]
