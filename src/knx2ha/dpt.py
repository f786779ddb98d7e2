"""Canonicalize datapoint type strings into dot ("9.001") and hyphen ("9-1") forms."""

import logging
import re

logger = logging.getLogger(__name__)

# DPST-9-1, DPT-9, 9.001, 9.1, 9, 9_001, 9 001 (case-insensitive)
_DPT_PATTERN = re.compile(
    r"^(?:dpst|dpt)?[-_ .]?(\d{1,3})(?:[-_. ]+(\d{1,4}))?$",
    re.IGNORECASE,
)

DEFAULT_CACHE_SIZE = 1000

_MISS = object()


def _split(raw: str | None) -> tuple[int, int | None] | None:
    if raw is None:
        return None
    first = str(raw).split(",")[0].strip()
    if not first:
        return None
    m = _DPT_PATTERN.match(first)
    if not m:
        return None
    major = int(m.group(1))
    minor = int(m.group(2)) if m.group(2) is not None else None
    return major, minor


def normalize_dpt_to_dot(raw: str | None) -> str | None:
    """Uncached: "DPST-9-1" -> "9.001", "DPT-9" -> "9"; None when unparseable."""
    parts = _split(raw)
    if parts is None:
        return None
    major, minor = parts
    if minor is None:
        return str(major)
    return f"{major}.{minor:03d}"


def normalize_dpt_to_hyphen(raw: str | None) -> str | None:
    """Uncached: "9.001" -> "9-1", "9" -> "9"; None when unparseable."""
    parts = _split(raw)
    if parts is None:
        return None
    major, minor = parts
    if minor is None:
        return str(major)
    return f"{major}-{minor}"


def dpt_major(raw: str | None) -> int | None:
    parts = _split(raw)
    return parts[0] if parts else None


class DptNormalizer:
    """
    DPT canonicalizer with one bounded cache per direction.

    Each cache is cleared once it grows past cache_size distinct keys.
    Instances are not shared between parsers.
    """

    def __init__(self, cache_size: int = DEFAULT_CACHE_SIZE) -> None:
        if cache_size < 1:
            raise ValueError(f"cache_size must be positive, got {cache_size}")
        self.cache_size = cache_size
        self._dot: dict[str | None, str | None] = {}
        self._hyphen: dict[str | None, str | None] = {}

    def _lookup(self, cache: dict[str | None, str | None], raw: str | None, fn) -> str | None:
        hit = cache.get(raw, _MISS)
        if hit is not _MISS:
            return hit  # type: ignore[return-value]
        value = fn(raw)
        if len(cache) >= self.cache_size:
            logger.debug("DPT cache reached %d entries, pruning", len(cache))
            cache.clear()
        cache[raw] = value
        return value

    def to_dot(self, raw: str | None) -> str | None:
        return self._lookup(self._dot, raw, normalize_dpt_to_dot)

    def to_hyphen(self, raw: str | None) -> str | None:
        return self._lookup(self._hyphen, raw, normalize_dpt_to_hyphen)

    def major(self, raw: str | None) -> int | None:
        dot = self.to_dot(raw)
        return dpt_major(dot)

    def cache_sizes(self) -> tuple[int, int]:
        return len(self._dot), len(self._hyphen)

    def clear(self) -> None:
        self._dot.clear()
        self._hyphen.clear()
