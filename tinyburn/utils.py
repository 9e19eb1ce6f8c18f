"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Utility Functions Module
"""

import re

HEX_DIGITS = "0123456789ABCDEF"


def parse_number(value):
    """
    Converts a decimal or 0x-prefixed hexadecimal string to an integer.

    Args:
        value (str | int): The value to convert.

    Returns:
        int: The converted value.

    Raises:
        ValueError: If the string is neither decimal nor hexadecimal.
    """
    if isinstance(value, int):
        return value
    value = value.strip()
    if re.fullmatch(r"0[xX][0-9a-fA-F]+", value):
        return int(value, 16)
    if re.fullmatch(r"[0-9]+", value):
        return int(value)
    raise ValueError(f"Not a decimal or hexadecimal number: '{value}'")


def hex_char(value):
    """Returns the upper case hex digit for the low nibble of value."""
    return HEX_DIGITS[value & 0x0F]


def is_printable(byte):
    """True for bytes shown in the protocol trace, printable ASCII and line feed."""
    return 0x20 <= byte <= 0x7E or byte == 0x0A


def format_size(size_in_bytes):
    """
    Formats a size in bytes into a human-readable string.

    Args:
        size_in_bytes (int): Size in bytes.

    Returns:
        str: Human-readable size.
    """
    if size_in_bytes < 1024:
        return f"{size_in_bytes} B"
    for unit in ["KB", "MB"]:
        size_in_bytes /= 1024
        if size_in_bytes < 1024:
            break
    return f"{size_in_bytes:.2f} {unit}"
