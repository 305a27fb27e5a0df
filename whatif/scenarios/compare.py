from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from whatif.metrics.kpi import pct_change
from whatif.scenarios.store import Scenario


@dataclass(frozen=True)
class ComparisonRow:
    scenario_id: str
    name: str
    mode: str
    is_primary: bool
    revenue: float
    ebitda: float
    gross_margin: float
    projected_cash: float
    revenue_vs_primary_pct: float
    ebitda_vs_primary_pct: float
    margin_vs_primary_pts: float
    cash_vs_primary_pct: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenarioId": self.scenario_id,
            "name": self.name,
            "mode": self.mode,
            "isPrimary": self.is_primary,
            "revenue": self.revenue,
            "ebitda": self.ebitda,
            "grossMargin": self.gross_margin,
            "projectedCash": self.projected_cash,
            "revenueVsPrimaryPct": self.revenue_vs_primary_pct,
            "ebitdaVsPrimaryPct": self.ebitda_vs_primary_pct,
            "marginVsPrimaryPts": self.margin_vs_primary_pts,
            "cashVsPrimaryPct": self.cash_vs_primary_pct,
        }


def compare_to_primary(scenarios: List[Scenario], primary: Optional[Scenario] = None) -> List[ComparisonRow]:
    """Stored results of each scenario against the primary one.

    Uses the stored results as-is; with no primary every delta is 0.
    """
    if primary is None:
        primary = next((s for s in scenarios if s.is_primary), None)
    out: List[ComparisonRow] = []
    for s in scenarios:
        r = s.result
        if primary is None:
            rev_d = ebitda_d = margin_d = cash_d = 0.0
        else:
            p = primary.result
            rev_d = pct_change(r.revenue, p.revenue)
            ebitda_d = pct_change(r.ebitda, p.ebitda)
            margin_d = r.gross_margin - p.gross_margin
            cash_d = pct_change(r.projected_cash, p.projected_cash)
        out.append(ComparisonRow(
            scenario_id=s.id,
            name=s.name,
            mode=s.mode,
            is_primary=primary is not None and s.id == primary.id,
            revenue=r.revenue,
            ebitda=r.ebitda,
            gross_margin=r.gross_margin,
            projected_cash=r.projected_cash,
            revenue_vs_primary_pct=rev_d,
            ebitda_vs_primary_pct=ebitda_d,
            margin_vs_primary_pts=margin_d,
            cash_vs_primary_pct=cash_d,
        ))
    return out


def best_by(rows: List[ComparisonRow], metric: str = "ebitda") -> Optional[ComparisonRow]:
    if not rows:
        return None
    return max(rows, key=lambda r: getattr(r, metric))
