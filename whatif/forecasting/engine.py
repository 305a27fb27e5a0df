from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from whatif.forecasting.assumptions import (
    MODE_SIMPLE,
    ExpansionAssumptions,
    RetailStructural,
    ScenarioParameters,
    SimpleDelta,
    check_mode,
    sanitize,
)
from whatif.forecasting.trend import MONTHS_PER_YEAR, MonthlyTrendPoint, TrendSummary, build_trend, summarize_trend
from whatif.metrics.channels import is_marketplace
from whatif.metrics.kpi import as_float, gross_margin_pct, pct_change, safe_div
from whatif.metrics.snapshot import MetricsSnapshot

DAYS_PER_YEAR = 365


@dataclass(frozen=True)
class PLLines:
    revenue: float
    cogs: float
    opex: float
    ebitda: float
    gross_margin: float  # % of revenue
    cash: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "revenue": self.revenue,
            "cogs": self.cogs,
            "opex": self.opex,
            "ebitda": self.ebitda,
            "grossMargin": self.gross_margin,
            "cash": self.cash,
        }


@dataclass(frozen=True)
class WhatIfResult:
    revenue: float
    revenue_change_pct: float
    ebitda: float
    ebitda_change_pct: float
    gross_margin: float
    margin_change_pct: float  # percentage points
    projected_cash: float
    cash_change_pct: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "revenue": self.revenue,
            "revenueChangePct": self.revenue_change_pct,
            "ebitda": self.ebitda,
            "ebitdaChangePct": self.ebitda_change_pct,
            "grossMargin": self.gross_margin,
            "marginChangePct": self.margin_change_pct,
            "projectedCash": self.projected_cash,
            "cashChangePct": self.cash_change_pct,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "WhatIfResult":
        def f(camel: str, legacy: str) -> float:
            return as_float(d.get(camel, d.get(legacy)))

        return WhatIfResult(
            revenue=f("revenue", "revenue"),
            revenue_change_pct=f("revenueChangePct", "revenueChange"),
            ebitda=f("ebitda", "ebitda"),
            ebitda_change_pct=f("ebitdaChangePct", "ebitdaChange"),
            gross_margin=f("grossMargin", "grossMargin"),
            margin_change_pct=f("marginChangePct", "marginChange"),
            projected_cash=f("projectedCash", "projectedCash"),
            cash_change_pct=f("cashChangePct", "cashChange"),
        )


@dataclass(frozen=True)
class ChannelBreakdown:
    channel: str
    base_revenue: float
    gross_revenue: float
    net_revenue: float
    cogs: float
    ads_cost: float
    commission: float
    contribution: float
    contribution_margin: float  # % of net revenue

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "baseRevenue": self.base_revenue,
            "grossRevenue": self.gross_revenue,
            "netRevenue": self.net_revenue,
            "cogs": self.cogs,
            "adsCost": self.ads_cost,
            "commission": self.commission,
            "contribution": self.contribution,
            "contributionMargin": self.contribution_margin,
        }


@dataclass(frozen=True)
class RetailCosts:
    gross_revenue: float
    return_loss: float
    cogs: float
    channel_ads: float
    general_marketing: float
    commission: float
    shipping: float
    packaging: float
    overhead: float
    orders: float
    new_customers: float = 0.0
    customer_acquisition: float = 0.0
    expansion_revenue: float = 0.0
    expansion_setup: float = 0.0

    @property
    def operating(self) -> float:
        return (
            self.channel_ads + self.general_marketing + self.commission + self.shipping + self.packaging
            + self.overhead + self.customer_acquisition + self.expansion_setup
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "grossRevenue": self.gross_revenue,
            "returnLoss": self.return_loss,
            "cogs": self.cogs,
            "channelAds": self.channel_ads,
            "generalMarketing": self.general_marketing,
            "commission": self.commission,
            "shipping": self.shipping,
            "packaging": self.packaging,
            "overhead": self.overhead,
            "orders": self.orders,
            "newCustomers": self.new_customers,
            "customerAcquisition": self.customer_acquisition,
            "expansionRevenue": self.expansion_revenue,
            "expansionSetup": self.expansion_setup,
        }


@dataclass(frozen=True)
class Projection:
    mode: str
    baseline: PLLines
    projected: PLLines
    result: WhatIfResult
    trend: List[MonthlyTrendPoint]
    summary: TrendSummary
    channels: List[ChannelBreakdown] = field(default_factory=list)
    costs: Optional[RetailCosts] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "baseline": self.baseline.to_dict(),
            "projected": self.projected.to_dict(),
            "result": self.result.to_dict(),
            "monthlyTrend": [p.to_dict() for p in self.trend],
            "trendSummary": self.summary.to_dict(),
            "channels": [c.to_dict() for c in self.channels],
            "costs": self.costs.to_dict() if self.costs else None,
        }


def baseline_lines(snapshot: MetricsSnapshot) -> PLLines:
    revenue = snapshot.total_revenue
    cogs = snapshot.total_cogs
    opex = snapshot.base_opex
    ebitda = revenue - cogs - opex
    return PLLines(
        revenue=revenue,
        cogs=cogs,
        opex=opex,
        ebitda=ebitda,
        gross_margin=gross_margin_pct(revenue, cogs),
        cash=ebitda,
    )


def simple_revenue(base_revenue: float, p: SimpleDelta) -> float:
    # Price and volume compound on unit economics. The flat revenue delta only
    # applies when neither is set, so the two never stack.
    if p.price_change_pct == 0 and p.volume_change_pct == 0:
        return base_revenue * (1.0 + p.revenue_change_pct / 100.0)
    return base_revenue * (1.0 + p.price_change_pct / 100.0) * (1.0 + p.volume_change_pct / 100.0)


def working_capital_cash_delta(revenue: float, cogs: float, ar_days_change: float, ap_days_change: float) -> float:
    """Cash released (+) or tied up (-) by shifting collection/payment days.

    Each extra AR day holds one day of revenue in receivables; each extra AP
    day keeps one day of COGS in hand. 365-day year.
    """
    return -ar_days_change * revenue / DAYS_PER_YEAR + ap_days_change * cogs / DAYS_PER_YEAR


def project_simple(base: PLLines, p: SimpleDelta) -> PLLines:
    revenue = simple_revenue(base.revenue, p)
    cogs = base.cogs * (1.0 + p.cogs_change_pct / 100.0)
    opex = base.opex * (1.0 + p.opex_change_pct / 100.0)
    ebitda = revenue - cogs - opex
    cash = ebitda + working_capital_cash_delta(revenue, cogs, p.ar_days_change, p.ap_days_change)
    return PLLines(
        revenue=revenue,
        cogs=cogs,
        opex=opex,
        ebitda=ebitda,
        gross_margin=gross_margin_pct(revenue, cogs),
        cash=cash,
    )


def expansion_lines(e: ExpansionAssumptions, current_stores: int) -> Tuple[float, float]:
    """(revenue, setup cost) of the stores opened on top of `current_stores`.

    Openings are spread evenly over `expansion_months`, so a new store trades
    for 12 - expansion_months / 2 months of the year on average. Ramp-up
    scales its run-rate down, never below half.
    """
    if not e.enabled:
        return 0.0, 0.0
    new_stores = max(0, e.target_stores - current_stores)
    months_open = max(0.0, MONTHS_PER_YEAR - e.expansion_months / 2.0)
    ramp_factor = max(0.5, 1.0 - e.ramp_up_months / MONTHS_PER_YEAR)
    revenue = new_stores * e.revenue_per_store * months_open / MONTHS_PER_YEAR * ramp_factor
    return revenue, new_stores * e.setup_cost_per_store


def project_retail(base_revenue: float, p: RetailStructural):
    """Channel-structured P&L. Returns (lines, channel rows, cost lines)."""
    costs = p.costs
    ops = p.operations
    return_loss_rate = ops.return_rate_pct / 100.0 * ops.return_cost_pct / 100.0

    rows: List[ChannelBreakdown] = []
    gross_total = 0.0
    net_total = 0.0
    ads_total = 0.0
    commission_total = 0.0
    for key, ch in p.enabled_channels().items():
        ch_base = base_revenue * ch.revenue_share_pct / 100.0
        ch_gross = ch_base * (1.0 + ch.growth_rate_pct / 100.0)
        ch_net = ch_gross * (1.0 - return_loss_rate)
        ch_cogs = ch_net * costs.cogs_rate_pct / 100.0
        ch_ads = ch_net * costs.per_channel_marketing_pct.get(key, 0.0) / 100.0
        ch_comm = ch_net * costs.marketplace_commission_pct.get(key, 0.0) / 100.0 if is_marketplace(key) else 0.0
        contribution = ch_net - ch_cogs - ch_ads - ch_comm
        rows.append(ChannelBreakdown(
            channel=key,
            base_revenue=ch_base,
            gross_revenue=ch_gross,
            net_revenue=ch_net,
            cogs=ch_cogs,
            ads_cost=ch_ads,
            commission=ch_comm,
            contribution=contribution,
            contribution_margin=safe_div(contribution, ch_net) * 100.0,
        ))
        gross_total += ch_gross
        net_total += ch_net
        ads_total += ch_ads
        commission_total += ch_comm

    # General buckets are tenant-wide: charged once on total revenue, never
    # folded into a channel's own ad spend.
    general = net_total * sum(costs.general_marketing_pct.values()) / 100.0
    orders = safe_div(gross_total, ops.avg_order_value)
    shipping = orders * costs.shipping_cost_per_order
    packaging = orders * costs.packaging_cost_per_order
    h = p.overhead
    overhead = (
        h.avg_staff_cost * h.number_of_stores * h.staff_per_store
        + h.warehouse_rent
        + costs.offline_rent_cost * h.number_of_stores
        + h.tech_infra_cost
    )
    new_customers = orders * (1.0 - ops.repeat_purchase_rate_pct / 100.0)
    expansion_revenue, expansion_setup = expansion_lines(p.expansion, h.number_of_stores)
    revenue = net_total + expansion_revenue
    cogs_total = revenue * costs.cogs_rate_pct / 100.0
    cost_lines = RetailCosts(
        gross_revenue=gross_total,
        return_loss=gross_total - net_total,
        cogs=cogs_total,
        channel_ads=ads_total,
        general_marketing=general,
        commission=commission_total,
        shipping=shipping,
        packaging=packaging,
        overhead=overhead,
        orders=orders,
        new_customers=new_customers,
        customer_acquisition=new_customers * ops.customer_acquisition_cost,
        expansion_revenue=expansion_revenue,
        expansion_setup=expansion_setup,
    )
    opex = cost_lines.operating
    ebitda = revenue - cogs_total - opex
    lines = PLLines(
        revenue=revenue,
        cogs=cogs_total,
        opex=opex,
        ebitda=ebitda,
        gross_margin=gross_margin_pct(revenue, cogs_total),
        cash=ebitda,
    )
    return lines, rows, cost_lines


def compare(base: PLLines, projected: PLLines) -> WhatIfResult:
    return WhatIfResult(
        revenue=projected.revenue,
        revenue_change_pct=pct_change(projected.revenue, base.revenue),
        ebitda=projected.ebitda,
        ebitda_change_pct=pct_change(projected.ebitda, base.ebitda),
        gross_margin=projected.gross_margin,
        margin_change_pct=projected.gross_margin - base.gross_margin if base.revenue else 0.0,
        projected_cash=projected.cash,
        cash_change_pct=pct_change(projected.cash, base.cash),
    )


def project(
    snapshot: MetricsSnapshot,
    mode: str,
    parameters: ScenarioParameters,
    horizon_months: int = 12,
) -> Projection:
    """Project P&L, cash and a monthly EBITDA trend for one parameter set.

    Pure: no I/O and no state kept between calls. Parameters are clamped
    before use; only a mode/parameter mismatch or a bad horizon raises.
    """
    check_mode(mode, parameters)
    if isinstance(horizon_months, bool) or not float(horizon_months).is_integer():
        raise ValueError(f"horizon_months must be a whole number, got {horizon_months!r}")
    horizon_months = int(horizon_months)
    if horizon_months < 1:
        raise ValueError("horizon_months must be >= 1")
    params = sanitize(parameters)
    base = baseline_lines(snapshot)

    channels: List[ChannelBreakdown] = []
    costs: Optional[RetailCosts] = None
    if mode == MODE_SIMPLE:
        projected = project_simple(base, params)
    else:
        projected, channels, costs = project_retail(base.revenue, params)

    trend = build_trend(base.ebitda, projected.ebitda, horizon_months)
    return Projection(
        mode=mode,
        baseline=base,
        projected=projected,
        result=compare(base, projected),
        trend=trend,
        summary=summarize_trend(trend),
        channels=channels,
        costs=costs,
    )

