"""
Progress analytics helpers for dashboards and award confirmations.

Provides:
- Level curve thresholds and progress within the current level
- Score histograms and summary statistics over attempt history
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..models.progression_state import XP_PER_LEVEL, level_for_xp


def xp_for_level(level: int, xp_per_level: int = XP_PER_LEVEL) -> int:
    """
    Total XP at which ``level`` is reached.

    Inverse of the square-root curve: xp_per_level * (level - 1)^2.

    Example:
        >>> [xp_for_level(n) for n in (1, 2, 3, 4)]
        [0, 100, 400, 900]
    """
    if level < 1:
        raise ValueError(f"Level must be >= 1, got {level}")
    return xp_per_level * (level - 1) ** 2


def level_progress(
    total_xp: int, level: Optional[int] = None, xp_per_level: int = XP_PER_LEVEL
) -> Dict[str, Any]:
    """
    Describe how far a learner is through their current level.

    Args:
        total_xp: Lifetime XP
        level: Stored level (defaults to the curve level for total_xp)
        xp_per_level: Level curve divisor

    Returns:
        Dict with level, total_xp, xp_into_level, xp_to_next_level,
        next_level_xp and percent (0-100)

    Example:
        >>> level_progress(450)["xp_to_next_level"]
        450
    """
    level = level or level_for_xp(total_xp, xp_per_level)
    floor_xp = xp_for_level(level, xp_per_level)
    next_xp = xp_for_level(level + 1, xp_per_level)
    span = next_xp - floor_xp

    into = max(0, total_xp - floor_xp)
    remaining = max(0, next_xp - total_xp)

    return {
        "level": level,
        "total_xp": total_xp,
        "xp_into_level": into,
        "xp_to_next_level": remaining,
        "next_level_xp": next_xp,
        "percent": round(min(100.0, 100.0 * into / span), 1),
    }


def score_histogram(scores: Iterable[int], bin_size: int = 10) -> List[Tuple[str, int]]:
    """
    Build a histogram of quiz percentages grouped by bins.

    Args:
        scores: Percentages (0-100)
        bin_size: Size of each bin (10 gives 0-9, 10-19, ..., 90-99)

    Returns:
        List of (bin_label, count) tuples, sorted by bin

    Example:
        >>> score_histogram([85, 72, 45, 100])
        [('40-49', 1), ('70-79', 1), ('80-89', 1), ('90-99', 1)]
    """
    bins: Dict[str, int] = {}
    for value in scores:
        clamped = max(0, min(100, int(value)))
        bin_start = (clamped // bin_size) * bin_size

        # A perfect score shares the top bin
        if bin_start >= 100:
            bin_start = 100 - bin_size

        label = f"{bin_start}-{bin_start + bin_size - 1}"
        bins[label] = bins.get(label, 0) + 1

    return sorted(bins.items(), key=lambda kv: int(kv[0].split("-")[0]))


def attempt_summary(attempts: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Summary statistics over attempt history records.

    Args:
        attempts: Records as produced by QuizSession.to_summary

    Returns:
        Dict with count, mean, median, best, std_dev, total_xp and
        timeouts (attempts force-submitted by the countdown)
    """
    if not attempts:
        return {
            "count": 0,
            "mean": 0.0,
            "median": 0.0,
            "best": 0,
            "std_dev": 0.0,
            "total_xp": 0,
            "timeouts": 0,
        }

    values = sorted(a["score"] for a in attempts)
    n = len(values)

    mean_val = sum(values) / n
    if n % 2 == 1:
        median_val = float(values[n // 2])
    else:
        median_val = (values[n // 2 - 1] + values[n // 2]) / 2.0
    std_dev = math.sqrt(sum((v - mean_val) ** 2 for v in values) / n)

    return {
        "count": n,
        "mean": round(mean_val, 2),
        "median": round(median_val, 2),
        "best": values[-1],
        "std_dev": round(std_dev, 2),
        "total_xp": sum(a.get("xp_earned", 0) for a in attempts),
        "timeouts": sum(1 for a in attempts if a.get("completion_trigger") == "timeout"),
    }
