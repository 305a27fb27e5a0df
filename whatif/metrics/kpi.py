from __future__ import annotations
import math
from typing import Any


def safe_div(a: Any, b: Any) -> float:
    try:
        out = float(a) / float(b) if b not in (0, None) else 0.0
    except (TypeError, ValueError, ZeroDivisionError):
        return 0.0
    return out if math.isfinite(out) else 0.0


def pct(part: Any, whole: Any) -> float:
    """part / whole as a percentage; 0 when whole is 0."""
    return safe_div(part, whole) * 100.0


def pct_change(new: float, base: float) -> float:
    """Relative change in percent against |base|, so a loss shrinking reads positive."""
    if not base:
        return 0.0
    return (float(new) - float(base)) / abs(float(base)) * 100.0


def gross_margin_pct(revenue: float, cogs: float) -> float:
    return pct(revenue - cogs, revenue)


def as_float(value: Any, default: float = 0.0) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default
