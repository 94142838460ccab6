"""Parsing of the conversion form fields."""

from __future__ import annotations

import re
from typing import Any

from task_state import Resolution

DEFAULT_RESOLUTION = Resolution(width=1280, height=720)
DEFAULT_DURATION_PER_SLIDE = 3
DEFAULT_TRANSITION = "fade"

MIN_WIDTH, MAX_WIDTH = 320, 3840
MIN_HEIGHT, MAX_HEIGHT = 240, 2160
MIN_DURATION, MAX_DURATION = 2, 10

_RESOLUTION_PATTERN = re.compile(r"(\d+)\s*x\s*(\d+)")


def _clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def parse_resolution(value: Any = None) -> Resolution:
    """Parse a ``"WxH"`` string, clamping each side independently.

    Anything that does not contain two numbers falls back to ``1280x720``.
    A zero side is treated as missing and replaced by the default for that side.
    """

    if value is None:
        return DEFAULT_RESOLUTION.model_copy()
    match = _RESOLUTION_PATTERN.search(str(value))
    if not match:
        return DEFAULT_RESOLUTION.model_copy()
    width = int(match.group(1)) or DEFAULT_RESOLUTION.width
    height = int(match.group(2)) or DEFAULT_RESOLUTION.height
    return Resolution(
        width=_clamp(width, MIN_WIDTH, MAX_WIDTH),
        height=_clamp(height, MIN_HEIGHT, MAX_HEIGHT),
    )


def parse_duration_per_slide(value: Any = None) -> int:
    """Return seconds per slide clamped to ``[2, 10]``; non-numeric input means 3."""

    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return DEFAULT_DURATION_PER_SLIDE
    if seconds != seconds or seconds == 0:  # NaN or zero
        return DEFAULT_DURATION_PER_SLIDE
    if seconds in (float("inf"), float("-inf")):
        return MAX_DURATION if seconds > 0 else MIN_DURATION
    return _clamp(int(seconds), MIN_DURATION, MAX_DURATION)


def parse_transition(value: Any = None) -> str:
    return "none" if value == "none" else DEFAULT_TRANSITION
