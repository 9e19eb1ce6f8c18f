"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson
Permission is hereby granted under MIT license.

This module holds the table of supported devices. For every device name it
keeps the programming protocol, the avrdude part id, the default fuse values
and the three byte device signature, and it maintains a reverse index so a
signature read from a device can be turned back into a name.

The table is loaded from the packaged data/chips.json, with entries from the
user's ~/.tinyburn/chips.json layered on top. A registry is an ordinary
object built by load_registry() and handed to whoever needs chip metadata.
"""

import os
import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Optional, Tuple, Union

from tinyburn.config import get_local_chips
from tinyburn.constants import UNKNOWN_DEVICE

logger = logging.getLogger("Chips")


class Protocol(Enum):
    TPI = "TPI"
    ISP = "ISP"


@dataclass(frozen=True)
class ChipInfo:
    protocol: Protocol
    core: str
    variant: Optional[str]
    libs: Optional[str]
    part: str  # avrdude -p switch
    fuses: str
    signature: str

    @classmethod
    def from_dict(cls, data: dict) -> "ChipInfo":
        return cls(
            protocol=Protocol(data["protocol"].upper()),
            core=data.get("core"),
            variant=data.get("variant"),
            libs=data.get("libs"),
            part=data["part"],
            fuses=data.get("fuses", ""),
            signature=normalize_signature(data["signature"]),
        )


def normalize_signature(signature: Union[str, bytes, Iterable[int]]) -> str:
    """
    Converts a device signature to six upper case hex characters.

    Accepts "1E930B", avrdude's "0x1e,0x93,0xb" output, bytes or a sequence
    of ints.

    Raises:
        ValueError: If the signature can't be interpreted.
    """
    if isinstance(signature, str):
        text = signature.strip()
        if "," in text or "x" in text.lower():
            values = [int(part.strip(), 16) for part in text.split(",") if part.strip()]
        else:
            text = text.replace(" ", "")
            int(text, 16)
            return text.upper()
    else:
        values = list(signature)
    for value in values:
        if not 0 <= value <= 0xFF:
            raise ValueError(f"Signature byte out of range: {value}")
    return "".join(f"{value:02X}" for value in values)


class ChipRegistry:
    """
    Device table keyed by name with a parallel signature index.
    Names are case insensitive.
    """

    def __init__(self, chips: Iterable[Tuple[str, ChipInfo]] = ()):
        self._chips: Dict[str, ChipInfo] = {}
        self._signatures: Dict[str, str] = {}
        for name, info in chips:
            self.register(name, info)

    def register(self, name: str, info: ChipInfo):
        """Adds a device. A repeated signature points at the last device registered."""
        name = name.lower()
        previous = self._chips.get(name)
        if previous and self._signatures.get(previous.signature) == name:
            del self._signatures[previous.signature]
        self._chips[name] = info
        self._signatures[info.signature] = name

    def get(self, name: Optional[str]) -> Optional[ChipInfo]:
        if not name:
            return None
        return self._chips.get(name.lower())

    def lookup_by_signature(self, signature) -> str:
        """Returns the name of the device with this signature, or 'unknown'."""
        try:
            key = normalize_signature(signature)
        except (ValueError, TypeError):
            logger.warning(f"Unreadable device signature: {signature!r}")
            return UNKNOWN_DEVICE
        name = self._signatures.get(key)
        if name is None:
            logger.warning(f"Device signature {key} not found in chip table.")
            return UNKNOWN_DEVICE
        return name

    def names(self):
        return list(self._chips)

    def items(self):
        return MappingProxyType(self._chips).items()

    def __contains__(self, name) -> bool:
        return isinstance(name, str) and name.lower() in self._chips

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._chips))

    def __len__(self) -> int:
        return len(self._chips)


def _read_chip_file(filepath: Path) -> dict:
    try:
        with filepath.open("rt") as file:
            return json.load(file)
    except FileNotFoundError:
        logger.error(f"Chip file not found: {filepath}")
        return {}
    except json.JSONDecodeError:
        logger.error(f"Error decoding JSON from file: {filepath}")
        return {}


def _add_entries(registry: ChipRegistry, entries: dict, source: str):
    for name, data in entries.items():
        try:
            registry.register(name, ChipInfo.from_dict(data))
        except (KeyError, ValueError, AttributeError) as e:
            logger.error(f"Skipping invalid chip '{name}' from {source}: {e}")


def load_registry(path: Optional[str] = None, include_local: bool = True) -> ChipRegistry:
    """
    Builds a registry from the packaged chip table, or from path when given,
    then applies the local user overrides.
    """
    if path is None:
        path = Path(os.path.dirname(__file__)) / "data" / "chips.json"
    registry = ChipRegistry()
    _add_entries(registry, _read_chip_file(Path(path)), str(path))

    if include_local:
        local = get_local_chips()
        if local:
            logger.debug(f"Applying {len(local)} local chip definitions.")
            _add_entries(registry, local, "local chip file")
    return registry
