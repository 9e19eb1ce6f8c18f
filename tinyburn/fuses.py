"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Fuse Bitfield Module

Fuse bits are active low: a programmed (0) bit enables its feature. Every
conversion between raw fuse bytes and named settings goes through
decode_fuses() and encode_fuses().
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple

from tinyburn.chips import Protocol

logger = logging.getLogger("Fuses")

NOT_USED = "Not Used"


class FuseEditError(ValueError):
    pass


class FuseResponseError(ValueError):
    pass


@dataclass(frozen=True)
class FuseField:
    label: str
    bit: int
    byte: str
    group: Optional[str] = None
    reserved: bool = False
    dangerous: bool = False


def _fuse_byte(byte, *fields):
    """Builds the fields of one fuse byte, listed from bit 7 down to bit 0."""
    result = []
    for bit, field in zip(range(7, -1, -1), fields):
        label, group, dangerous = field
        result.append(
            FuseField(
                label=label,
                bit=bit,
                byte=byte,
                group=group,
                reserved=label == NOT_USED,
                dangerous=dangerous,
            )
        )
    return tuple(result)


_UNUSED = (NOT_USED, None, False)

ISP_FUSES = (
    _fuse_byte(
        "L",
        ("CKDIV8", "CKDIV8", False),
        ("CKOUT", "CKOUT", False),
        ("SUT1", "SUT", False),
        ("SUT0", "SUT", False),
        ("CKSEL3", "CKSEL", False),
        ("CKSEL2", "CKSEL", False),
        ("CKSEL1", "CKSEL", False),
        ("CKSEL0", "CKSEL", False),
    )
    + _fuse_byte(
        "H",
        ("RSTDISBL", "RSTDISBL", True),
        ("DWEN", "DWEN", True),
        ("SPIEN", "SPIEN", True),
        ("WDTON", "WDTON", False),
        ("EESAVE", "EESAVE", False),
        ("BODLEVEL2", "BODLEVEL", False),
        ("BODLEVEL1", "BODLEVEL", False),
        ("BODLEVEL0", "BODLEVEL", False),
    )
    + _fuse_byte(
        "E",
        _UNUSED,
        _UNUSED,
        _UNUSED,
        _UNUSED,
        _UNUSED,
        _UNUSED,
        _UNUSED,
        ("SELFPRGEN", "SELFPRGEN", False),
    )
)

TPI_FUSES = _fuse_byte(
    "F",
    _UNUSED,
    _UNUSED,
    _UNUSED,
    _UNUSED,
    _UNUSED,
    ("CKOUT", "CKOUT", False),
    ("WDTON", "WDTON", False),
    ("RSTDISBL", "RSTDISBL", False),
)

FUSE_LAYOUTS = {
    Protocol.ISP: ISP_FUSES,
    Protocol.TPI: TPI_FUSES,
}

FUSE_BYTES = {
    Protocol.ISP: ("L", "H", "E"),
    Protocol.TPI: ("F",),
}


def fuse_layout(protocol: Protocol) -> Tuple[FuseField, ...]:
    try:
        return FUSE_LAYOUTS[protocol]
    except KeyError:
        raise ValueError(f"No fuse layout for protocol {protocol}") from None


def fuse_byte_names(protocol: Protocol) -> Tuple[str, ...]:
    try:
        return FUSE_BYTES[protocol]
    except KeyError:
        raise ValueError(f"No fuse bytes for protocol {protocol}") from None


def decode_fuses(protocol: Protocol, raw: Sequence[int]) -> Dict[FuseField, bool]:
    """
    Maps raw fuse bytes, in layout order, to {field: enabled}.
    A field is enabled when its bit is 0.
    """
    names = fuse_byte_names(protocol)
    if len(raw) != len(names):
        raise ValueError(
            f"{protocol.value} fuses need {len(names)} byte(s), got {len(raw)}"
        )
    values = dict(zip(names, raw))
    return {
        field: not (values[field.byte] >> field.bit) & 1
        for field in fuse_layout(protocol)
    }


def encode_fuses(
    protocol: Protocol,
    settings: Mapping[FuseField, bool],
    original: Optional[Sequence[int]] = None,
) -> Tuple[int, ...]:
    """
    Maps {field: enabled} back to raw fuse bytes. Bits of fields missing
    from settings are taken from original, which defaults to all ones
    (every fuse unprogrammed).
    """
    names = fuse_byte_names(protocol)
    values = list(original) if original is not None else [0xFF] * len(names)
    if len(values) != len(names):
        raise ValueError(
            f"{protocol.value} fuses need {len(names)} byte(s), got {len(values)}"
        )
    layout = set(fuse_layout(protocol))
    index = {name: i for i, name in enumerate(names)}
    for field, enabled in settings.items():
        if field not in layout:
            raise ValueError(f"Fuse field {field.label} is not a {protocol.value} fuse")
        mask = 1 << field.bit
        i = index[field.byte]
        if enabled:
            values[i] &= ~mask & 0xFF
        else:
            values[i] |= mask
    return tuple(values)


def apply_edits(
    protocol: Protocol,
    settings: Mapping[FuseField, bool],
    edits: Mapping[str, bool],
) -> Dict[FuseField, bool]:
    """
    Returns a copy of settings with edits applied. An edit names a field
    label (CKDIV8) or a group (CKSEL sets every CKSEL bit).
    """
    result = dict(settings)
    layout = fuse_layout(protocol)
    for name, enabled in edits.items():
        key = name.upper()
        matches = [
            field
            for field in layout
            if not field.reserved and (field.label == key or field.group == key)
        ]
        if not matches:
            raise FuseEditError(f"Unknown {protocol.value} fuse: {name}")
        for field in matches:
            if field.dangerous and enabled != result.get(field):
                logger.warning(
                    f"Changing {field.label} may lock the device out of its programmer."
                )
            result[field] = enabled
    return result


def parse_fuse_spec(protocol: Protocol, spec: str) -> Tuple[int, ...]:
    """
    Parses a chip table fuse spec: "FF" for the single TPI fuse byte or
    "l:60,h:DF,e:FF" for ISP parts. Unlisted bytes default to 0xFF.
    """
    names = fuse_byte_names(protocol)
    values = [0xFF] * len(names)
    spec = (spec or "").strip()
    if not spec:
        return tuple(values)
    for i, item in enumerate(spec.split(",")):
        if ":" in item:
            name, value = item.split(":", 1)
            name = name.strip().upper()
        else:
            name, value = names[i] if i < len(names) else "", item
        if name not in names:
            raise ValueError(f"Unknown fuse byte '{name}' in '{spec}'")
        values[names.index(name)] = int(value.strip(), 16) & 0xFF
    return tuple(values)


FUSE_RESPONSE_REGEX = re.compile(r"Fuse:\s*0[xX]([0-9A-Fa-f]{1,2})")


def parse_fuse_response(response: str) -> int:
    """Extracts the fuse byte from a TPI programmer reply such as 'Fuse: 0xFE'."""
    match = FUSE_RESPONSE_REGEX.match((response or "").strip())
    if not match:
        raise FuseResponseError(f"Unable to read Fuse byte from: {response!r}")
    return int(match.group(1), 16)
