from __future__ import annotations
from typing import List, Dict, Any, Iterable
import csv
import io

from whatif.forecasting.trend import MonthlyTrendPoint
from whatif.scenarios.compare import ComparisonRow
from whatif.scenarios.store import Scenario

SCHEMAS = {
    "monthly_trend": [
        "month","base_ebitda","projected_ebitda","cumulative_base_ebitda","cumulative_projected_ebitda"
    ],
    "scenarios": [
        "id","name","mode","is_primary","is_favorite","revenue","revenue_change_pct","ebitda","ebitda_change_pct","gross_margin","margin_change_pct","projected_cash","cash_change_pct","created_by","created_at","updated_at"
    ],
    "comparison": [
        "scenario_id","name","mode","is_primary","revenue","ebitda","gross_margin","projected_cash","revenue_vs_primary_pct","ebitda_vs_primary_pct","margin_vs_primary_pts","cash_vs_primary_pct"
    ],
}


def write_csv(rows: Iterable[Dict[str, Any]], columns: List[str]) -> str:
    buf = io.StringIO()
    w = csv.DictWriter(buf, fieldnames=columns, extrasaction="ignore")
    w.writeheader()
    for r in rows:
        w.writerow({k: r.get(k) for k in columns})
    return buf.getvalue()


def write_monthly_trend(points: Iterable[MonthlyTrendPoint]) -> str:
    rows = (
        {
            "month": p.month,
            "base_ebitda": round(p.base_ebitda, 2),
            "projected_ebitda": round(p.projected_ebitda, 2),
            "cumulative_base_ebitda": round(p.cumulative_base_ebitda, 2),
            "cumulative_projected_ebitda": round(p.cumulative_projected_ebitda, 2),
        }
        for p in points
    )
    return write_csv(rows, SCHEMAS["monthly_trend"])


def write_scenarios(scenarios: Iterable[Scenario]) -> str:
    rows = []
    for s in scenarios:
        r = s.result
        rows.append({
            "id": s.id,
            "name": s.name,
            "mode": s.mode,
            "is_primary": s.is_primary,
            "is_favorite": s.is_favorite,
            "revenue": r.revenue,
            "revenue_change_pct": r.revenue_change_pct,
            "ebitda": r.ebitda,
            "ebitda_change_pct": r.ebitda_change_pct,
            "gross_margin": r.gross_margin,
            "margin_change_pct": r.margin_change_pct,
            "projected_cash": r.projected_cash,
            "cash_change_pct": r.cash_change_pct,
            "created_by": s.created_by,
            "created_at": s.created_at.isoformat(),
            "updated_at": s.updated_at.isoformat(),
        })
    return write_csv(rows, SCHEMAS["scenarios"])


def write_comparison(rows: Iterable[ComparisonRow]) -> str:
    return write_csv(
        ({k: getattr(r, k) for k in SCHEMAS["comparison"]} for r in rows),
        SCHEMAS["comparison"],
    )
