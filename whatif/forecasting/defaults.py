from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict

from whatif.forecasting.assumptions import (
    ChannelAssumption,
    CostAssumptions,
    ExpansionAssumptions,
    OperationsAssumptions,
    OverheadAssumptions,
    RetailStructural,
    SimpleDelta,
)
from whatif.metrics.channels import KNOWN_CHANNELS, MARKETPLACE_CHANNELS, normalize_channel
from whatif.metrics.kpi import safe_div
from whatif.metrics.snapshot import MetricsSnapshot

FALLBACK_COGS_RATE_PCT = 65.0

PER_CHANNEL_MARKETING_PCT: Dict[str, float] = {
    "offline": 2.0, "online": 10.0, "shopee": 8.0, "lazada": 10.0, "tiki": 5.0, "tiktok": 15.0,
}
GENERAL_MARKETING_PCT: Dict[str, float] = {"facebook_ads": 3.0, "google_ads": 2.0, "other_ads": 1.0}
MARKETPLACE_COMMISSION_PCT: Dict[str, float] = {"shopee": 5.0, "lazada": 5.0, "tiki": 5.0, "tiktok": 8.0}

# Starting point when a tenant has no transactions yet. Revenue shares stay at
# zero: with no baseline revenue a share moves nothing.
PRESET_CHANNELS: Dict[str, ChannelAssumption] = {
    "offline": ChannelAssumption(enabled=True, revenue_share_pct=0.0, growth_rate_pct=5.0),
    "online": ChannelAssumption(enabled=True, revenue_share_pct=0.0, growth_rate_pct=15.0),
    "shopee": ChannelAssumption(enabled=True, revenue_share_pct=0.0, growth_rate_pct=10.0),
    "lazada": ChannelAssumption(enabled=True, revenue_share_pct=0.0, growth_rate_pct=8.0),
    "tiki": ChannelAssumption(enabled=False, revenue_share_pct=0.0, growth_rate_pct=5.0),
    "tiktok": ChannelAssumption(enabled=True, revenue_share_pct=0.0, growth_rate_pct=25.0),
}
PRESET_COSTS = CostAssumptions(
    cogs_rate_pct=FALLBACK_COGS_RATE_PCT,
    per_channel_marketing_pct=dict(PER_CHANNEL_MARKETING_PCT),
    general_marketing_pct=dict(GENERAL_MARKETING_PCT),
    marketplace_commission_pct=dict(MARKETPLACE_COMMISSION_PCT),
    shipping_cost_per_order=25_000.0,
    packaging_cost_per_order=5_000.0,
    offline_rent_cost=50_000_000.0,
)
PRESET_OPERATIONS = OperationsAssumptions(
    avg_order_value=500_000.0,
    return_rate_pct=3.0,
    return_cost_pct=10.0,
    customer_acquisition_cost=80_000.0,
    repeat_purchase_rate_pct=25.0,
)
PRESET_OVERHEAD = OverheadAssumptions(
    number_of_stores=1,
    staff_per_store=3.0,
    avg_staff_cost=10_000_000.0,
    warehouse_rent=30_000_000.0,
    tech_infra_cost=10_000_000.0,
)
# Expansion is opt-in; the figures only prefill the form.
PRESET_EXPANSION = ExpansionAssumptions(
    enabled=False,
    target_stores=10,
    expansion_months=12.0,
    setup_cost_per_store=500_000_000.0,
    revenue_per_store=2_400_000_000.0,
    ramp_up_months=3.0,
)


@dataclass(frozen=True)
class ParameterDefaults:
    simple: SimpleDelta
    retail: RetailStructural
    has_data: bool


def neutral_simple() -> SimpleDelta:
    return SimpleDelta()


def preset_retail() -> RetailStructural:
    costs = replace(
        PRESET_COSTS,
        per_channel_marketing_pct=dict(PER_CHANNEL_MARKETING_PCT),
        general_marketing_pct=dict(GENERAL_MARKETING_PCT),
        marketplace_commission_pct=dict(MARKETPLACE_COMMISSION_PCT),
    )
    return RetailStructural(
        channels=dict(PRESET_CHANNELS),
        costs=costs,
        operations=PRESET_OPERATIONS,
        overhead=PRESET_OVERHEAD,
        expansion=PRESET_EXPANSION,
    )


def _round1(x: float) -> float:
    return round(x * 10) / 10


def channel_shares(snapshot: MetricsSnapshot) -> Dict[str, float]:
    """Snapshot shares folded onto canonical keys (e.g. website + web -> online)."""
    out: Dict[str, float] = {}
    for label, m in snapshot.channel_metrics.items():
        key = normalize_channel(label)
        out[key] = out.get(key, 0.0) + m.share
    return out


def estimate_commissions(snapshot: MetricsSnapshot) -> Dict[str, float]:
    """fees / revenue per marketplace, rounded to one decimal; preset where unknown."""
    fees: Dict[str, float] = {}
    revenue: Dict[str, float] = {}
    for label, m in snapshot.channel_metrics.items():
        key = normalize_channel(label)
        fees[key] = fees.get(key, 0.0) + m.fees
        revenue[key] = revenue.get(key, 0.0) + m.revenue
    out = dict(MARKETPLACE_COMMISSION_PCT)
    for key in MARKETPLACE_CHANNELS:
        if revenue.get(key, 0.0) > 0:
            out[key] = _round1(safe_div(fees.get(key, 0.0), revenue[key]) * 100)
    return out


def build_defaults(snapshot: MetricsSnapshot) -> ParameterDefaults:
    """Turn a snapshot into ready-to-edit simple and retail parameter sets.

    Never raises. Per-channel growth is not tracked upstream, so every channel
    gets the tenant-wide monthly growth rate.
    """
    if not snapshot.has_data:
        return ParameterDefaults(simple=neutral_simple(), retail=preset_retail(), has_data=False)

    has_revenue = snapshot.total_revenue > 0
    shares = channel_shares(snapshot) if has_revenue else {}
    growth = snapshot.monthly_growth_rate

    seen = {normalize_channel(label) for label in snapshot.channel_metrics}
    channels: Dict[str, ChannelAssumption] = {}
    for key in list(KNOWN_CHANNELS) + sorted(seen - set(KNOWN_CHANNELS)):
        channels[key] = ChannelAssumption(
            enabled=key in seen,
            revenue_share_pct=shares.get(key, 0.0),
            growth_rate_pct=growth,
        )

    cogs_rate = (
        _round1(snapshot.total_cogs / snapshot.total_revenue * 100) if has_revenue else FALLBACK_COGS_RATE_PCT
    )
    aov = snapshot.avg_order_value
    overhead = snapshot.overhead_cost
    costs = CostAssumptions(
        cogs_rate_pct=cogs_rate,
        per_channel_marketing_pct=dict(PER_CHANNEL_MARKETING_PCT),
        general_marketing_pct=dict(GENERAL_MARKETING_PCT),
        marketplace_commission_pct=estimate_commissions(snapshot),
        shipping_cost_per_order=float(round(aov * 0.05)),
        packaging_cost_per_order=float(round(aov * 0.01)),
        offline_rent_cost=float(round(overhead * 0.3)),
    )
    operations = OperationsAssumptions(
        avg_order_value=aov,
        return_rate_pct=snapshot.return_rate,
        return_cost_pct=10.0,
        customer_acquisition_cost=PRESET_OPERATIONS.customer_acquisition_cost,
        repeat_purchase_rate_pct=PRESET_OPERATIONS.repeat_purchase_rate_pct,
    )
    overhead_params = OverheadAssumptions(
        number_of_stores=1,
        staff_per_store=3.0,
        avg_staff_cost=float(round(overhead * 0.4 / 3)),
        warehouse_rent=float(round(overhead * 0.15)),
        tech_infra_cost=float(round(overhead * 0.15)),
    )
    retail = RetailStructural(
        channels=channels, costs=costs, operations=operations, overhead=overhead_params, expansion=PRESET_EXPANSION
    )
    return ParameterDefaults(simple=neutral_simple(), retail=retail, has_data=True)
