from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

MONTHS_PER_YEAR = 12
SEASONAL_AMPLITUDE = 0.08
RAMP_STEEPNESS = 3.0


@dataclass(frozen=True)
class MonthlyTrendPoint:
    month: int  # 1-based
    base_ebitda: float
    projected_ebitda: float
    cumulative_base_ebitda: float
    cumulative_projected_ebitda: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "baseEbitda": self.base_ebitda,
            "projectedEbitda": self.projected_ebitda,
            "cumulativeBaseEbitda": self.cumulative_base_ebitda,
            "cumulativeProjectedEbitda": self.cumulative_projected_ebitda,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "MonthlyTrendPoint":
        return MonthlyTrendPoint(
            month=int(d["month"]),
            base_ebitda=float(d["baseEbitda"]),
            projected_ebitda=float(d["projectedEbitda"]),
            cumulative_base_ebitda=float(d["cumulativeBaseEbitda"]),
            cumulative_projected_ebitda=float(d["cumulativeProjectedEbitda"]),
        )


@dataclass(frozen=True)
class TrendSummary:
    total_base_ebitda: float
    total_projected_ebitda: float
    ebitda_diff: float
    ebitda_change_pct: float
    break_even_month: Optional[int]
    best_month: Optional[int]
    worst_month: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalBaseEbitda": self.total_base_ebitda,
            "totalProjectedEbitda": self.total_projected_ebitda,
            "ebitdaDiff": self.ebitda_diff,
            "ebitdaChangePct": self.ebitda_change_pct,
            "breakEvenMonth": self.break_even_month,
            "bestMonth": self.best_month,
            "worstMonth": self.worst_month,
        }


def _logistic(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-RAMP_STEEPNESS * (x - 0.5)))


def ramp(index: int, horizon: int) -> float:
    """S-curve progress at month `index`: about 0.18 at the first month, 0.82 at the last.

    The curve is not stretched to [0, 1], so month one already carries part of
    the change and the last month stops short of the full projected run-rate.
    """
    progress = index / (horizon - 1) if horizon > 1 else 1.0
    return _logistic(progress)


def seasonal_factor(index: int) -> float:
    # Peaks around months 10-12, troughs mid-year; always within [0.92, 1.08].
    return 1.0 + SEASONAL_AMPLITUDE * math.sin((index + 3) * math.pi / 6)


def build_trend(base_annual_ebitda: float, projected_annual_ebitda: float, horizon_months: int = 12) -> List[MonthlyTrendPoint]:
    """Spread annual EBITDA over `horizon_months` months.

    Each figure is split evenly across the horizon (annual / horizon_months
    per month), so a 24-month horizon shows the same year at half the monthly
    rate. The projection moves from the baseline run-rate towards the
    projected one along an S-curve. Both series share the same seasonality,
    so a month's sign always matches its un-seasoned value.
    """
    if horizon_months < 1:
        raise ValueError("horizon_months must be >= 1")
    base_m = base_annual_ebitda / horizon_months
    proj_m = projected_annual_ebitda / horizon_months

    points: List[MonthlyTrendPoint] = []
    cum_base = 0.0
    cum_proj = 0.0
    for i in range(horizon_months):
        season = seasonal_factor(i)
        b = base_m * season
        p = (base_m + (proj_m - base_m) * ramp(i, horizon_months)) * season
        cum_base += b
        cum_proj += p
        points.append(MonthlyTrendPoint(
            month=i + 1,
            base_ebitda=b,
            projected_ebitda=p,
            cumulative_base_ebitda=cum_base,
            cumulative_projected_ebitda=cum_proj,
        ))
    return points


def summarize_trend(points: List[MonthlyTrendPoint]) -> TrendSummary:
    if not points:
        return TrendSummary(0.0, 0.0, 0.0, 0.0, None, None, None)
    total_base = points[-1].cumulative_base_ebitda
    total_proj = points[-1].cumulative_projected_ebitda
    change = (total_proj - total_base) / abs(total_base) * 100.0 if total_base else 0.0

    # First month where the projection clears the baseline by 5%
    break_even = None
    if total_proj > total_base:
        for pt in points:
            if pt.projected_ebitda > pt.base_ebitda + abs(pt.base_ebitda) * 0.05:
                break_even = pt.month
                break

    by_gain = sorted(points, key=lambda pt: pt.projected_ebitda - pt.base_ebitda, reverse=True)
    return TrendSummary(
        total_base_ebitda=total_base,
        total_projected_ebitda=total_proj,
        ebitda_diff=total_proj - total_base,
        ebitda_change_pct=change,
        break_even_month=break_even,
        best_month=by_gain[0].month,
        worst_month=by_gain[-1].month,
    )
