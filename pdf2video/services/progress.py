"""Progress bands owned by each pipeline stage."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProgressBand:
    """Sub-range of the 0-100 progress scale owned by one stage."""

    start: int
    end: int

    def at(self, completed: float, total: float) -> int:
        """Return the percentage for ``completed`` out of ``total`` units, clamped to the band."""

        if total <= 0:
            return self.start
        ratio = max(0.0, min(float(completed) / float(total), 1.0))
        return self.start + int(round(ratio * (self.end - self.start)))


RASTERIZE_BAND = ProgressBand(0, 40)
UPLOAD_BAND = ProgressBand(40, 65)
SUBMITTED_PROGRESS = 70
POLL_BAND = ProgressBand(SUBMITTED_PROGRESS, 95)
COMPLETE_PROGRESS = 100
