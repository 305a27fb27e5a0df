from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from whatif.forecasting.assumptions import RetailStructural
from whatif.metrics.channels import normalize_channel
from whatif.metrics.kpi import safe_div
from whatif.metrics.snapshot import MetricsSnapshot

# Response of revenue/profit to a budget move, per % of budget moved.
# Adding budget has diminishing returns; cutting it loses less than pro rata.
INCREASE_REVENUE_ELASTICITY = 0.7
INCREASE_PROFIT_ELASTICITY = 0.5
DECREASE_REVENUE_ELASTICITY = 0.3
DECREASE_PROFIT_ELASTICITY = 0.2


@dataclass(frozen=True)
class ChannelPerformance:
    key: str
    revenue: float
    channel_cost: float  # marketing + platform fees attributed to the channel
    gross_profit: float
    growth_pct: float = 0.0


@dataclass(frozen=True)
class ChannelRecommendation:
    channel: str
    roi: float
    efficiency: float
    margin: float
    scalability: float
    current_share: float
    recommended_share: float
    current_budget: float
    new_budget: float
    budget_change_pct: float
    current_revenue: float
    new_revenue: float
    current_profit: float
    new_profit: float
    current_roi: float
    new_roi: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "roi": self.roi,
            "efficiency": self.efficiency,
            "margin": self.margin,
            "scalability": self.scalability,
            "currentShare": self.current_share,
            "recommendedShare": self.recommended_share,
            "currentBudget": self.current_budget,
            "newBudget": self.new_budget,
            "budgetChangePct": self.budget_change_pct,
            "currentRevenue": self.current_revenue,
            "newRevenue": self.new_revenue,
            "currentProfit": self.current_profit,
            "newProfit": self.new_profit,
            "currentRoi": self.current_roi,
            "newRoi": self.new_roi,
        }


@dataclass(frozen=True)
class BudgetAdvice:
    total_budget: float
    recommendations: List[ChannelRecommendation] = field(default_factory=list)
    revenue_before: float = 0.0
    revenue_after: float = 0.0
    profit_before: float = 0.0
    profit_after: float = 0.0
    roi_before: float = 0.0
    roi_after: float = 0.0

    @property
    def roi_improvement(self) -> float:
        return self.roi_after - self.roi_before

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalBudget": self.total_budget,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "revenueBefore": self.revenue_before,
            "revenueAfter": self.revenue_after,
            "profitBefore": self.profit_before,
            "profitAfter": self.profit_after,
            "roiBefore": self.roi_before,
            "roiAfter": self.roi_after,
            "roiImprovement": self.roi_improvement,
        }


def channels_from_snapshot(snapshot: MetricsSnapshot, retail: Optional[RetailStructural] = None) -> List[ChannelPerformance]:
    """Per-channel performance from the same channel data the scenarios use.

    Channel cost = platform fees + the channel's own ad rate on its revenue.
    """
    merged: Dict[str, Dict[str, float]] = {}
    for label, m in snapshot.channel_metrics.items():
        key = normalize_channel(label)
        acc = merged.setdefault(key, {"revenue": 0.0, "cogs": 0.0, "fees": 0.0})
        acc["revenue"] += m.revenue
        acc["cogs"] += m.cogs
        acc["fees"] += m.fees

    out: List[ChannelPerformance] = []
    for key in sorted(merged):
        acc = merged[key]
        ad_rate = retail.costs.per_channel_marketing_pct.get(key, 0.0) if retail else 0.0
        growth = snapshot.monthly_growth_rate
        if retail and key in retail.channels:
            growth = retail.channels[key].growth_rate_pct
        ads = acc["revenue"] * ad_rate / 100.0
        out.append(ChannelPerformance(
            key=key,
            revenue=acc["revenue"],
            channel_cost=acc["fees"] + ads,
            gross_profit=acc["revenue"] - acc["cogs"] - acc["fees"],
            growth_pct=growth,
        ))
    return out


def _project_move(revenue: float, profit: float, change_pct: float):
    step = abs(change_pct) / 100.0
    if change_pct > 0:
        return revenue * (1 + step * INCREASE_REVENUE_ELASTICITY), profit + abs(profit) * step * INCREASE_PROFIT_ELASTICITY
    if change_pct < 0:
        return revenue * (1 - step * DECREASE_REVENUE_ELASTICITY), profit - abs(profit) * step * DECREASE_PROFIT_ELASTICITY
    return revenue, profit


def advise_budget(channels: List[ChannelPerformance], total_budget: float, max_shift_pct: float = 20.0) -> BudgetAdvice:
    """Suggest a per-channel split of `total_budget`.

    Shares move toward each channel's ROI-weighted score, scaled up for
    channels that grow fast at good margins. No single channel moves more than
    `max_shift_pct` share points before the split is renormalised to 100%.
    """
    total_cost = sum(max(c.channel_cost, 0.0) for c in channels)
    if total_budget <= 0 or not channels or total_cost <= 0:
        return BudgetAdvice(total_budget=max(total_budget, 0.0))

    stats = []
    for c in channels:
        cost = max(c.channel_cost, 0.0)
        roi = safe_div(c.gross_profit, cost) * 100.0
        margin = safe_div(c.gross_profit, c.revenue) * 100.0
        scalability = c.growth_pct / 10.0 + margin / 20.0 if cost > 0 else 0.0
        score = max(roi, 0.0) * (1.0 + max(scalability, 0.0) / 10.0)
        stats.append((c, cost, roi, margin, scalability, score))

    total_score = sum(s[5] for s in stats)
    raw: List[float] = []
    for c, cost, _roi, _m, _s, score in stats:
        current = cost / total_cost * 100.0
        target = score / total_score * 100.0 if total_score > 0 else current
        capped = min(max(target, current - max_shift_pct), current + max_shift_pct)
        raw.append(max(capped, 0.0))
    raw_total = sum(raw)
    shares = [r / raw_total * 100.0 for r in raw] if raw_total > 0 else [s[1] / total_cost * 100.0 for s in stats]

    recs: List[ChannelRecommendation] = []
    for (c, cost, roi, margin, scalability, _score), share in zip(stats, shares):
        current_share = cost / total_cost * 100.0
        cur_budget = current_share / 100.0 * total_budget
        new_budget = share / 100.0 * total_budget
        change = safe_div(new_budget - cur_budget, cur_budget) * 100.0
        new_rev, new_profit = _project_move(c.revenue, c.gross_profit, change)
        recs.append(ChannelRecommendation(
            channel=c.key,
            roi=roi,
            efficiency=safe_div(c.revenue, cost),
            margin=margin,
            scalability=scalability,
            current_share=current_share,
            recommended_share=share,
            current_budget=cur_budget,
            new_budget=new_budget,
            budget_change_pct=change,
            current_revenue=c.revenue,
            new_revenue=new_rev,
            current_profit=c.gross_profit,
            new_profit=new_profit,
            current_roi=safe_div(c.gross_profit, cur_budget) * 100.0,
            new_roi=safe_div(new_profit, new_budget) * 100.0,
        ))
    recs.sort(key=lambda r: r.roi, reverse=True)

    rev_before = sum(r.current_revenue for r in recs)
    rev_after = sum(r.new_revenue for r in recs)
    profit_before = sum(r.current_profit for r in recs)
    profit_after = sum(r.new_profit for r in recs)
    budget_before = sum(r.current_budget for r in recs)
    budget_after = sum(r.new_budget for r in recs)
    return BudgetAdvice(
        total_budget=total_budget,
        recommendations=recs,
        revenue_before=rev_before,
        revenue_after=rev_after,
        profit_before=profit_before,
        profit_after=profit_after,
        roi_before=safe_div(profit_before, budget_before) * 100.0,
        roi_after=safe_div(profit_after, budget_after) * 100.0,
    )
