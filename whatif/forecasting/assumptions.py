from __future__ import annotations
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Union

from whatif.errors import ValidationError
from whatif.metrics.channels import normalize_channel

MODE_SIMPLE = "simple"
MODE_RETAIL = "retail"
MODES = (MODE_SIMPLE, MODE_RETAIL)


@dataclass(frozen=True)
class SimpleDelta:
    # Relative deltas vs. baseline, in percent (days for AR/AP)
    revenue_change_pct: float = 0.0
    cogs_change_pct: float = 0.0
    opex_change_pct: float = 0.0
    ar_days_change: float = 0.0
    ap_days_change: float = 0.0
    price_change_pct: float = 0.0
    volume_change_pct: float = 0.0

    mode = MODE_SIMPLE

    def is_neutral(self) -> bool:
        return all(v == 0 for v in _simple_values(self))


@dataclass(frozen=True)
class ChannelAssumption:
    enabled: bool = False
    revenue_share_pct: float = 0.0
    growth_rate_pct: float = 0.0


@dataclass(frozen=True)
class CostAssumptions:
    cogs_rate_pct: float = 65.0
    per_channel_marketing_pct: Dict[str, float] = field(default_factory=dict)
    general_marketing_pct: Dict[str, float] = field(default_factory=dict)
    marketplace_commission_pct: Dict[str, float] = field(default_factory=dict)
    shipping_cost_per_order: float = 0.0
    packaging_cost_per_order: float = 0.0
    offline_rent_cost: float = 0.0  # per store


@dataclass(frozen=True)
class OperationsAssumptions:
    avg_order_value: float = 0.0
    return_rate_pct: float = 0.0
    return_cost_pct: float = 0.0
    customer_acquisition_cost: float = 0.0  # per new customer
    repeat_purchase_rate_pct: float = 0.0


@dataclass(frozen=True)
class OverheadAssumptions:
    number_of_stores: int = 0
    staff_per_store: float = 0.0
    avg_staff_cost: float = 0.0
    warehouse_rent: float = 0.0
    tech_infra_cost: float = 0.0


@dataclass(frozen=True)
class ExpansionAssumptions:
    # New stores opened during the year, on top of overhead.number_of_stores
    enabled: bool = False
    target_stores: int = 0
    expansion_months: float = 0.0
    setup_cost_per_store: float = 0.0
    revenue_per_store: float = 0.0  # annual, at full run-rate
    ramp_up_months: float = 0.0


@dataclass(frozen=True)
class RetailStructural:
    channels: Dict[str, ChannelAssumption] = field(default_factory=dict)
    costs: CostAssumptions = field(default_factory=CostAssumptions)
    operations: OperationsAssumptions = field(default_factory=OperationsAssumptions)
    overhead: OverheadAssumptions = field(default_factory=OverheadAssumptions)
    expansion: ExpansionAssumptions = field(default_factory=ExpansionAssumptions)

    mode = MODE_RETAIL

    def enabled_channels(self) -> Dict[str, ChannelAssumption]:
        return {k: c for k, c in self.channels.items() if c.enabled}


ScenarioParameters = Union[SimpleDelta, RetailStructural]


# ---------------------------------------------------------------------------
# Clamping. Out-of-range numbers are pulled back to the nearest safe value;
# only structurally malformed input raises ValidationError.

def _clamp(v: float, lo: float | None = None, hi: float | None = None) -> float:
    if lo is not None and v < lo:
        return lo
    if hi is not None and v > hi:
        return hi
    return v


def sanitize_simple(p: SimpleDelta) -> SimpleDelta:
    # A multiplier below zero would flip signs; -100% is the floor.
    return replace(
        p,
        revenue_change_pct=_clamp(p.revenue_change_pct, -100.0),
        cogs_change_pct=_clamp(p.cogs_change_pct, -100.0),
        opex_change_pct=_clamp(p.opex_change_pct, -100.0),
        price_change_pct=_clamp(p.price_change_pct, -100.0),
        volume_change_pct=_clamp(p.volume_change_pct, -100.0),
    )


def sanitize_retail(p: RetailStructural) -> RetailStructural:
    channels = {
        k: ChannelAssumption(
            enabled=bool(c.enabled),
            revenue_share_pct=_clamp(c.revenue_share_pct, 0.0, 100.0),
            growth_rate_pct=_clamp(c.growth_rate_pct, -100.0),
        )
        for k, c in p.channels.items()
    }
    c = p.costs
    costs = CostAssumptions(
        cogs_rate_pct=_clamp(c.cogs_rate_pct, 0.0, 100.0),
        per_channel_marketing_pct={k: _clamp(v, 0.0, 100.0) for k, v in c.per_channel_marketing_pct.items()},
        general_marketing_pct={k: _clamp(v, 0.0, 100.0) for k, v in c.general_marketing_pct.items()},
        marketplace_commission_pct={k: _clamp(v, 0.0, 100.0) for k, v in c.marketplace_commission_pct.items()},
        shipping_cost_per_order=_clamp(c.shipping_cost_per_order, 0.0),
        packaging_cost_per_order=_clamp(c.packaging_cost_per_order, 0.0),
        offline_rent_cost=_clamp(c.offline_rent_cost, 0.0),
    )
    o = p.operations
    ops = OperationsAssumptions(
        avg_order_value=_clamp(o.avg_order_value, 0.0),
        return_rate_pct=_clamp(o.return_rate_pct, 0.0, 100.0),
        return_cost_pct=_clamp(o.return_cost_pct, 0.0, 100.0),
        customer_acquisition_cost=_clamp(o.customer_acquisition_cost, 0.0),
        repeat_purchase_rate_pct=_clamp(o.repeat_purchase_rate_pct, 0.0, 100.0),
    )
    h = p.overhead
    overhead = OverheadAssumptions(
        number_of_stores=max(0, int(h.number_of_stores)),
        staff_per_store=_clamp(h.staff_per_store, 0.0),
        avg_staff_cost=_clamp(h.avg_staff_cost, 0.0),
        warehouse_rent=_clamp(h.warehouse_rent, 0.0),
        tech_infra_cost=_clamp(h.tech_infra_cost, 0.0),
    )
    e = p.expansion
    expansion = ExpansionAssumptions(
        enabled=bool(e.enabled),
        target_stores=max(0, int(e.target_stores)),
        expansion_months=_clamp(e.expansion_months, 0.0),
        setup_cost_per_store=_clamp(e.setup_cost_per_store, 0.0),
        revenue_per_store=_clamp(e.revenue_per_store, 0.0),
        ramp_up_months=_clamp(e.ramp_up_months, 0.0),
    )
    return RetailStructural(channels=channels, costs=costs, operations=ops, overhead=overhead, expansion=expansion)


def sanitize(p: ScenarioParameters) -> ScenarioParameters:
    if isinstance(p, SimpleDelta):
        return sanitize_simple(p)
    if isinstance(p, RetailStructural):
        return sanitize_retail(p)
    raise ValidationError(f"unsupported parameter type: {type(p).__name__}")


def check_mode(mode: str, p: ScenarioParameters) -> None:
    if mode not in MODES:
        raise ValidationError(f"mode must be one of {MODES}, got {mode!r}")
    if p.mode != mode:
        raise ValidationError(f"parameters are {p.mode!r} but mode is {mode!r}")


# ---------------------------------------------------------------------------
# Serialized form (camelCase, as stored in scenario rows). Older rows used
# shorter names (revenueChange, revenueShare, cogsRate, ...); both are read.

def _num(d: Mapping[str, Any], *keys: str, default: float = 0.0) -> float:
    for k in keys:
        if k in d and d[k] is not None:
            v = d[k]
            if isinstance(v, bool):
                raise ValidationError(f"{k} must be a number, got a boolean")
            try:
                out = float(v)
            except (TypeError, ValueError):
                raise ValidationError(f"{k} must be a number, got {v!r}")
            if not math.isfinite(out):
                raise ValidationError(f"{k} must be finite")
            return out
    return default


def _map(d: Mapping[str, Any], *keys: str, channel_keys: bool = False) -> Dict[str, float]:
    """Read a name -> number object. With `channel_keys`, names are folded onto
    canonical channel keys so rates line up with the channels they price."""
    for k in keys:
        if k in d and d[k] is not None:
            raw = d[k]
            if not isinstance(raw, Mapping):
                raise ValidationError(f"{k} must be an object")
            out: Dict[str, float] = {}
            for name in raw:
                key = normalize_channel(name) if channel_keys else str(name)
                v = _num(raw, name)
                if key in out and out[key] != v:
                    raise ValidationError(f"{k} has conflicting rates for channel {key!r}")
                out[key] = v
            return out
    return {}


def _merge_channels(parts: List[ChannelAssumption]) -> ChannelAssumption:
    # Several labels folded onto one key: shares add up, growth is
    # share-weighted so the merged channel projects the same revenue.
    active = [c for c in parts if c.enabled] or parts
    share = sum(c.revenue_share_pct for c in active)
    if share:
        growth = sum(c.revenue_share_pct * c.growth_rate_pct for c in active) / share
    else:
        growth = active[0].growth_rate_pct
    return ChannelAssumption(enabled=any(c.enabled for c in parts), revenue_share_pct=share, growth_rate_pct=growth)


def _section(d: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    raw = d.get(key) or {}
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{key} must be an object")
    return raw


def simple_from_dict(d: Mapping[str, Any]) -> SimpleDelta:
    return SimpleDelta(
        revenue_change_pct=_num(d, "revenueChangePct", "revenueChange", "revenue_change_pct"),
        cogs_change_pct=_num(d, "cogsChangePct", "cogsChange", "cogs_change_pct"),
        opex_change_pct=_num(d, "opexChangePct", "opexChange", "opex_change_pct"),
        ar_days_change=_num(d, "arDaysChange", "ar_days_change"),
        ap_days_change=_num(d, "apDaysChange", "ap_days_change"),
        price_change_pct=_num(d, "priceChangePct", "priceChange", "price_change_pct"),
        volume_change_pct=_num(d, "volumeChangePct", "volumeChange", "volume_change_pct"),
    )


def simple_to_dict(p: SimpleDelta) -> Dict[str, float]:
    return {
        "revenueChangePct": p.revenue_change_pct,
        "cogsChangePct": p.cogs_change_pct,
        "opexChangePct": p.opex_change_pct,
        "arDaysChange": p.ar_days_change,
        "apDaysChange": p.ap_days_change,
        "priceChangePct": p.price_change_pct,
        "volumeChangePct": p.volume_change_pct,
    }


def retail_from_dict(d: Mapping[str, Any]) -> RetailStructural:
    grouped: Dict[str, List[ChannelAssumption]] = {}
    for name, raw in _section(d, "channels").items():
        if not isinstance(raw, Mapping):
            raise ValidationError(f"channel {name!r} must be an object")
        grouped.setdefault(normalize_channel(name), []).append(ChannelAssumption(
            enabled=bool(raw.get("enabled", False)),
            revenue_share_pct=_num(raw, "revenueSharePct", "revenueShare"),
            growth_rate_pct=_num(raw, "growthRatePct", "growthRate"),
        ))
    channels = {k: parts[0] if len(parts) == 1 else _merge_channels(parts) for k, parts in grouped.items()}
    c = _section(d, "costs")
    o = _section(d, "operations")
    h = _section(d, "overhead")
    e = _section(d, "expansion")
    return RetailStructural(
        channels=channels,
        costs=CostAssumptions(
            cogs_rate_pct=_num(c, "cogsRatePct", "cogsRate", default=65.0),
            per_channel_marketing_pct=_map(c, "perChannelMarketingPct", "marketingAdsCost", channel_keys=True),
            general_marketing_pct=_map(c, "generalMarketingPct", "generalMarketingCost"),
            marketplace_commission_pct=_map(c, "marketplaceCommissionPct", "marketplaceCommission", channel_keys=True),
            shipping_cost_per_order=_num(c, "shippingCostPerOrder"),
            packaging_cost_per_order=_num(c, "packagingCostPerOrder"),
            offline_rent_cost=_num(c, "offlineRentCost"),
        ),
        operations=OperationsAssumptions(
            avg_order_value=_num(o, "avgOrderValue"),
            return_rate_pct=_num(o, "returnRatePct", "returnRate"),
            return_cost_pct=_num(o, "returnCostPct", "returnCostPercent"),
            customer_acquisition_cost=_num(o, "customerAcquisitionCost"),
            repeat_purchase_rate_pct=_num(o, "repeatPurchaseRatePct", "repeatPurchaseRate"),
        ),
        overhead=OverheadAssumptions(
            number_of_stores=int(_num(h, "numberOfStores")),
            staff_per_store=_num(h, "staffPerStore", "offlineStaffPerStore"),
            avg_staff_cost=_num(h, "avgStaffCost"),
            warehouse_rent=_num(h, "warehouseRent"),
            tech_infra_cost=_num(h, "techInfraCost"),
        ),
        expansion=ExpansionAssumptions(
            enabled=bool(e.get("enabled", e.get("enableExpansion", False))),
            target_stores=int(_num(e, "targetStores")),
            expansion_months=_num(e, "expansionMonths"),
            setup_cost_per_store=_num(e, "setupCostPerStore"),
            revenue_per_store=_num(e, "revenuePerStore"),
            ramp_up_months=_num(e, "rampUpMonths"),
        ),
    )


def retail_to_dict(p: RetailStructural) -> Dict[str, Any]:
    return {
        "channels": {
            k: {"enabled": c.enabled, "revenueSharePct": c.revenue_share_pct, "growthRatePct": c.growth_rate_pct}
            for k, c in p.channels.items()
        },
        "costs": {
            "cogsRatePct": p.costs.cogs_rate_pct,
            "perChannelMarketingPct": dict(p.costs.per_channel_marketing_pct),
            "generalMarketingPct": dict(p.costs.general_marketing_pct),
            "marketplaceCommissionPct": dict(p.costs.marketplace_commission_pct),
            "shippingCostPerOrder": p.costs.shipping_cost_per_order,
            "packagingCostPerOrder": p.costs.packaging_cost_per_order,
            "offlineRentCost": p.costs.offline_rent_cost,
        },
        "operations": {
            "avgOrderValue": p.operations.avg_order_value,
            "returnRatePct": p.operations.return_rate_pct,
            "returnCostPct": p.operations.return_cost_pct,
            "customerAcquisitionCost": p.operations.customer_acquisition_cost,
            "repeatPurchaseRatePct": p.operations.repeat_purchase_rate_pct,
        },
        "overhead": {
            "numberOfStores": p.overhead.number_of_stores,
            "staffPerStore": p.overhead.staff_per_store,
            "avgStaffCost": p.overhead.avg_staff_cost,
            "warehouseRent": p.overhead.warehouse_rent,
            "techInfraCost": p.overhead.tech_infra_cost,
        },
        "expansion": {
            "enabled": p.expansion.enabled,
            "targetStores": p.expansion.target_stores,
            "expansionMonths": p.expansion.expansion_months,
            "setupCostPerStore": p.expansion.setup_cost_per_store,
            "revenuePerStore": p.expansion.revenue_per_store,
            "rampUpMonths": p.expansion.ramp_up_months,
        },
    }


def parameters_from_dict(mode: str, d: Mapping[str, Any] | None) -> ScenarioParameters:
    if d is not None and not isinstance(d, Mapping):
        raise ValidationError("parameters must be an object")
    d = d or {}
    if mode == MODE_SIMPLE:
        return simple_from_dict(d)
    if mode == MODE_RETAIL:
        return retail_from_dict(d)
    raise ValidationError(f"mode must be one of {MODES}, got {mode!r}")


def parameters_to_dict(p: ScenarioParameters) -> Dict[str, Any]:
    if isinstance(p, SimpleDelta):
        return simple_to_dict(p)
    return retail_to_dict(p)


def _simple_values(p: SimpleDelta):
    return (
        p.revenue_change_pct, p.cogs_change_pct, p.opex_change_pct,
        p.ar_days_change, p.ap_days_change, p.price_change_pct, p.volume_change_pct,
    )
