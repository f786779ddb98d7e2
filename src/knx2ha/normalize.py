"""Parse and validate KNX group addresses; packed-address codec; flag canonicalization."""

import re
from typing import Mapping

from .types import Flags

# main/middle/sub, tolerating surrounding whitespace
_ADDRESS_PATTERN = re.compile(r"^\s*(\d{1,3})\s*/\s*(\d{1,3})\s*/\s*(\d{1,3})\s*$")

# Strict output form used by every emitted entity
_STRICT_ADDRESS = re.compile(r"^\d+/\d+/\d+$")

MAX_MAIN = 31
MAX_MIDDLE = 7
MAX_SUB = 255
MAX_PACKED = 0xFFFF

# Legacy attribute spellings -> canonical flag field
_FLAG_ALIASES: dict[str, str] = {
    "read": "read",
    "readflag": "read",
    "write": "write",
    "writeflag": "write",
    "transmit": "transmit",
    "transmitflag": "transmit",
    "communication": "transmit",
    "communicationflag": "transmit",
    "update": "update",
    "updateflag": "update",
    "readoninit": "read_on_init",
    "readoninitflag": "read_on_init",
    "read_on_init": "read_on_init",
}


def parse_address(raw: str | None) -> tuple[int, int, int] | None:
    """Parse "main/middle/sub" into an int triple; None when malformed or out of range."""
    if raw is None:
        return None
    m = _ADDRESS_PATTERN.match(raw)
    if not m:
        return None
    return in_range(*(int(g) for g in m.groups()))


def in_range(main: int, middle: int, sub: int) -> tuple[int, int, int] | None:
    if not (0 <= main <= MAX_MAIN and 0 <= middle <= MAX_MIDDLE and 0 <= sub <= MAX_SUB):
        return None
    return main, middle, sub


def format_address(main: int, middle: int, sub: int) -> str:
    return f"{main}/{middle}/{sub}"


def decode_packed_address(value: int | str) -> str | None:
    """
    Decode a packed 16-bit group address into "main/middle/sub".

    main = n // 2048, middle = (n % 2048) // 256, sub = n % 256.
    Returns None for non-numeric or out-of-range input.
    """
    try:
        n = int(str(value).strip())
    except ValueError:
        return None
    if n < 0 or n > MAX_PACKED:
        return None
    return format_address(n // 2048, (n % 2048) // 256, n % 256)


def encode_packed_address(address: str) -> int | None:
    """Inverse of decode_packed_address."""
    triple = parse_address(address)
    if triple is None:
        return None
    main, middle, sub = triple
    return main * 2048 + middle * 256 + sub


def compose_address(main: str | None, middle: str | None, sub: str | None) -> str | None:
    """Build an address from separate component attributes; None if any part is missing or out of range."""
    if main is None or middle is None or sub is None:
        return None
    try:
        triple = in_range(int(main), int(middle), int(sub))
    except ValueError:
        return None
    return format_address(*triple) if triple else None


def is_valid_address(address: str | None) -> bool:
    return address is not None and bool(_STRICT_ADDRESS.match(address))


def address_sort_key(address: str) -> tuple[int, int, int]:
    """Numeric sort key; malformed addresses sort last."""
    triple = parse_address(address)
    if triple is None:
        return (MAX_PACKED, MAX_PACKED, MAX_PACKED)
    return triple


def coerce_flag(value: bool | str | None) -> bool | str | None:
    """Turn textual "true"/"false" into bool; other strings are kept as-is."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        if lowered == "enabled":
            return True
        if lowered == "disabled":
            return False
    return value


def canonicalize_flags(raw: Mapping[str, bool | str | None] | None) -> Flags:
    """
    Fold any historical flag spelling into the canonical Flags record.

    Unknown keys are ignored. A canonical field is true if any alias for it
    is truthy after coercion.
    """
    if not raw:
        return Flags()
    values: dict[str, bool] = {}
    for key, value in raw.items():
        canonical = _FLAG_ALIASES.get(key.replace("-", "").lower())
        if canonical is None:
            continue
        coerced = coerce_flag(value)
        values[canonical] = values.get(canonical, False) or coerced is True
    return Flags(**values)
