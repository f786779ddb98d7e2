"""Phase ranges and a monotonic progress tracker for archive parsing."""

import logging
from typing import Callable

from .types import ParsePhase, ParseProgress

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ParseProgress], None]

# Disjoint sub-ranges of the 0–100 scale
PHASE_RANGES: dict[ParsePhase, tuple[float, float]] = {
    ParsePhase.LOAD: (0.0, 5.0),
    ParsePhase.SCAN: (5.0, 10.0),
    ParsePhase.EXTRACT: (10.0, 90.0),
    ParsePhase.PARSE: (10.0, 90.0),
    ParsePhase.BUILD: (90.0, 99.0),
    ParsePhase.DONE: (100.0, 100.0),
}

FILE_BAND = (10.0, 90.0)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def file_slot(phase: ParsePhase, index: int, total: int) -> tuple[float, float]:
    """
    Sub-range owned by one member's extract or parse step.

    The file band is split into one slot per member; extract owns the first
    half of the slot and parse the second half.
    """
    lo, hi = FILE_BAND
    width = (hi - lo) / max(total, 1)
    start = lo + width * index
    half = width / 2
    if phase is ParsePhase.EXTRACT:
        return start, start + half
    if phase is ParsePhase.PARSE:
        return start + half, start + width
    raise ValueError(f"{phase.value!r} is not a per-file phase")


class ProgressTracker:
    """Maps (phase, fraction) to a clamped, never-decreasing percent and emits events."""

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback
        self.total_files = 0
        self.last_percent = 0.0

    def _emit(self, phase: ParsePhase, value: float, lo: float, hi: float, **fields) -> None:
        percent = _clamp(max(self.last_percent, _clamp(value, lo, hi)), lo, hi)
        self.last_percent = percent
        if self._callback is None:
            return
        self._callback(
            ParseProgress(
                phase=phase,
                percent=round(percent, 2),
                total_files=fields.get("total_files", self.total_files or None),
                processed_files=fields.get("processed_files"),
                filename=fields.get("filename"),
                file_percent=fields.get("file_percent"),
                found_count=fields.get("found_count"),
                processed_count=fields.get("processed_count"),
            )
        )

    def phase(self, phase: ParsePhase, fraction: float = 0.0, **fields) -> None:
        """Report a global phase (load, scan, build, done) at fraction 0..1 of its range."""
        lo, hi = PHASE_RANGES[phase]
        self._emit(phase, lo + (hi - lo) * _clamp(fraction, 0.0, 1.0), lo, hi, **fields)

    def file(
        self,
        phase: ParsePhase,
        index: int,
        fraction: float = 0.0,
        *,
        filename: str | None = None,
        **fields,
    ) -> None:
        """Report extract/parse progress for the member at index among total_files."""
        lo, hi = file_slot(phase, index, self.total_files)
        fraction = _clamp(fraction, 0.0, 1.0)
        self._emit(
            phase,
            lo + (hi - lo) * fraction,
            lo,
            hi,
            filename=filename,
            processed_files=index + (1 if phase is ParsePhase.PARSE and fraction >= 1.0 else 0),
            file_percent=round(fraction * 100, 1),
            **fields,
        )
