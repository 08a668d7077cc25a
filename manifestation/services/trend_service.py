"""
Manifestation — Trend detection over a chronological series.

Ordinary least-squares slope of the last ``WINDOW`` points against their
index::

    slope = (nΣxy - ΣxΣy) / (nΣx² - (Σx)²)

``slope > 0.05`` is improving, ``slope < -0.05`` is declining, anything in
between (boundaries included) is stable.
"""

from __future__ import annotations

from typing import Literal, Mapping, Sequence

from manifestation.schemas.history import TrendPoint

TrendDirection = Literal["improving", "stable", "declining", "insufficient"]

MIN_POINTS: int = 3
WINDOW: int = 7
THRESHOLD: float = 0.05


def detect_trend(data: Sequence[float]) -> TrendDirection:
    if len(data) < MIN_POINTS:
        return "insufficient"

    recent = list(data[-WINDOW:])
    if len(recent) < 2:
        return "insufficient"

    n = len(recent)
    sum_x = 0
    sum_y = 0.0
    sum_xy = 0.0
    sum_xx = 0
    for i, y in enumerate(recent):
        sum_x += i
        sum_y += y
        sum_xy += i * y
        sum_xx += i * i

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)

    if slope > THRESHOLD:
        return "improving"
    if slope < -THRESHOLD:
        return "declining"
    return "stable"


def detect_category_trends(trends: Mapping[str, Sequence[TrendPoint]]) -> dict[str, TrendDirection]:
    """Classify every category series of a ``CategoryTrends`` mapping."""
    return {
        category: detect_trend([point.value for point in points])
        for category, points in trends.items()
    }
