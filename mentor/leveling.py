"""Experience-to-level conversion.

Levels grow quadratically: reaching level ``n`` takes ``100 * n**2`` XP, so
each successive level needs more XP than the one before it.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

LEVEL_SCALING_FACTOR = 100


def level(xp: int | float | None) -> int:
    """``floor(sqrt(xp / 100))``; missing or negative XP clamps to level 0."""
    if not xp or xp < 0:
        return 0
    return math.isqrt(int(xp) // LEVEL_SCALING_FACTOR)


def xp_floor(lvl: int) -> int:
    return LEVEL_SCALING_FACTOR * lvl * lvl


def xp_ceiling(lvl: int) -> int:
    return LEVEL_SCALING_FACTOR * (lvl + 1) * (lvl + 1)


def progress_percent(xp: int | float | None, lvl: int) -> int:
    """Percent of the way from *lvl*'s floor to its ceiling, clamped to 0..100."""
    base = xp_floor(lvl)
    span = xp_ceiling(lvl) - base
    if span <= 0:
        return 100
    pct = (int(xp or 0) - base) * 100 // span
    return max(0, min(100, pct))


@dataclass(frozen=True)
class LevelSummary:
    xp: int
    level: int
    xp_floor: int
    xp_ceiling: int
    progress_percent: int


def level_summary(xp: int | None) -> LevelSummary:
    xp = max(0, xp or 0)
    lvl = level(xp)
    return LevelSummary(
        xp=xp, level=lvl, xp_floor=xp_floor(lvl), xp_ceiling=xp_ceiling(lvl),
        progress_percent=progress_percent(xp, lvl),
    )
