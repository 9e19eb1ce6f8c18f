"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

ISP Fuse and Flash Operations Module
"""

import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

from tinyburn.avr_tool import ISP_FUSE_NAMES, AvrdudeCommandError
from tinyburn.chips import ChipRegistry
from tinyburn.hexfile import parse_intel_hex

logger = logging.getLogger("Isp")

FUSE_ALIASES = {
    "l": "lfuse",
    "low": "lfuse",
    "lfuse": "lfuse",
    "h": "hfuse",
    "high": "hfuse",
    "hfuse": "hfuse",
    "e": "efuse",
    "ext": "efuse",
    "extended": "efuse",
    "efuse": "efuse",
}


class FuseWriteError(Exception):
    """Writing one fuse byte failed; the bytes after it were not written."""

    def __init__(self, fuse: str, value: int, detail: str = ""):
        super().__init__(f"Error writing {fuse} = 0x{value:02X}")
        self.fuse = fuse
        self.value = value
        self.detail = detail


@dataclass
class FuseSyncResult:
    written: Dict[str, int] = field(default_factory=dict)
    unchanged: Dict[str, int] = field(default_factory=dict)


def normalize_fuse_targets(targets: Mapping[str, int]) -> Dict[str, int]:
    """Maps low/high/ext style keys to avrdude fuse names."""
    result = {}
    for key, value in targets.items():
        try:
            result[FUSE_ALIASES[key.lower()]] = value & 0xFF
        except KeyError:
            raise ValueError(f"Unknown fuse byte: {key}") from None
    return result


def fuse_values_to_bytes(values: Mapping[str, int]) -> Tuple[int, ...]:
    """{lfuse, hfuse, efuse} to the (L, H, E) tuple used by the fuse codec."""
    return tuple(values[name] for name in ISP_FUSE_NAMES)


def bytes_to_fuse_values(raw: Sequence[int]) -> Dict[str, int]:
    return dict(zip(ISP_FUSE_NAMES, raw))


def sync_fuses(tool, targets: Mapping[str, int], current: Optional[Mapping[str, int]] = None) -> FuseSyncResult:
    """
    Brings the device fuses to the target values, low, high then extended.

    Bytes that already hold their target are left alone and reported in
    the result. The first failed write raises FuseWriteError and the
    remaining bytes are not written.
    """
    targets = normalize_fuse_targets(targets)
    if current is None:
        current = tool.read_fuses()
    result = FuseSyncResult()
    for name in ISP_FUSE_NAMES:
        if name not in targets:
            continue
        target = targets[name]
        value = current.get(name)
        if value == target:
            logger.info(f"Fuse {name} already set correctly, so left unchanged")
            result.unchanged[name] = target
            continue
        current_str = f"0x{value:02X}" if value is not None else "?"
        logger.info(f"Writing {name}: {current_str} -> 0x{target:02X}")
        stderr, returncode = tool.write_fuse(name, target)
        if returncode != 0:
            logger.error(f"Error writing fuse {name} with {tool.programmer_id}")
            raise FuseWriteError(name, target, stderr)
        result.written[name] = target
    return result


def program_isp(tool, hex_text: str, targets: Optional[Mapping[str, int]] = None) -> Optional[FuseSyncResult]:
    """
    Programs an ISP part: fuses first when all three are declared, then flash.
    """
    parse_intel_hex(hex_text)
    sync_result = None
    if targets and set(normalize_fuse_targets(targets)) == set(ISP_FUSE_NAMES):
        sync_result = sync_fuses(tool, targets)
    else:
        logger.info("Fuses not programmed")

    with tempfile.TemporaryDirectory(prefix="tinyburn-") as tmp_dir:
        hex_file = Path(tmp_dir) / "code.hex"
        hex_file.write_text(hex_text)
        stderr, returncode = tool.flash_firmware(str(hex_file))
    if returncode != 0:
        for line in stderr.splitlines():
            logger.debug(f"  {line}")
        raise AvrdudeCommandError(f"Error programming flash with {tool.programmer_id}", stderr)
    logger.info("Flash programmed.")
    return sync_result


def identify_isp(tool, registry: ChipRegistry) -> Tuple[str, str]:
    """Reads the signature of an ISP part and returns (signature, device name)."""
    signature = tool.read_signature()
    name = registry.lookup_by_signature(signature)
    logger.info(f"Device Signature: {signature} - {name}")
    return signature, name
