"""Helpers for minutes-since-midnight time arithmetic."""

from __future__ import annotations

import math

from .errors import InvalidRequestError

MINUTES_PER_DAY = 24 * 60


def parse_hhmm(value: str) -> float:
    """Parse ``"HH:MM"`` (or ``"HH:MM:SS"``) into minutes since midnight."""

    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise InvalidRequestError(f"Invalid time '{value}', expected HH:MM.")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as exc:
        raise InvalidRequestError(f"Invalid time '{value}', expected HH:MM.") from exc
    if not (0 <= hours <= 24 and 0 <= minutes < 60 and 0 <= seconds < 60):
        raise InvalidRequestError(f"Invalid time '{value}', expected HH:MM.")
    total = hours * 60 + minutes + seconds / 60.0
    if total > MINUTES_PER_DAY:
        raise InvalidRequestError(f"Invalid time '{value}', past the end of the day.")
    return total


def format_hhmm(minutes: float) -> str:
    """Format minutes since midnight as ``"HH:MM"``.

    Values are rounded to the nearest minute; times past midnight keep counting
    hours (``25:10``) so that an overflowing estimate is still visible.
    """

    total = max(0, int(round(minutes)))
    return f"{total // 60:02d}:{total % 60:02d}"


def ceil_to_grid(minutes: float, grid: int) -> float:
    """Round ``minutes`` up to the next multiple of ``grid`` (no-op for grid <= 0)."""

    if grid <= 0:
        return minutes
    return math.ceil(round(minutes, 6) / grid) * grid
