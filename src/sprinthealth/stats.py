"""Numeric and formatting helpers shared by the analysis engines.

This module provides utilities for:
- Averaging samples without NaN propagation on empty input.
- Converting datetime differences to hours.
- Half-up rounding for scores and story point targets.
- Formatting hour-based durations and numbers for report text.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Optional

SECONDS_PER_HOUR = 3600.0


def safe_mean(values: Iterable[float]) -> float:
    """Return the arithmetic mean of ``values`` or ``0.0`` when empty.

    ``None`` and NaN samples are ignored so a missing measurement never turns
    the aggregate into NaN.
    """
    clean = [value for value in values if value is not None and not math.isnan(value)]
    if not clean:
        return 0.0
    return sum(clean) / len(clean)


def hours_between(start: datetime, end: datetime) -> float:
    """Return ``end - start`` in hours (negative when ``end`` precedes ``start``)."""
    return (end - start).total_seconds() / SECONDS_PER_HOUR


def round_half_up(value: float) -> int:
    """Round to the nearest integer, resolving ``.5`` upwards."""
    return int(math.floor(value + 0.5))


def percentage(part: float, total: float) -> float:
    """Return ``part / total * 100`` or ``0.0`` when ``total`` is zero."""
    if total == 0:
        return 0.0
    return part / total * 100.0


def format_number(value: float) -> str:
    """Format a count-like float without a trailing ``.0`` (``8.0`` -> ``8``)."""
    return f"{value:g}"


def format_hours(hours: Optional[float]) -> str:
    """Format an hour duration as ``12.5h`` or ``n/a`` when missing."""
    if hours is None:
        return "n/a"
    return f"{hours:.1f}h"
