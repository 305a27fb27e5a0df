from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from whatif.metrics.kpi import as_float


@dataclass(frozen=True)
class ChannelMetric:
    revenue: float = 0.0
    orders: float = 0.0
    cogs: float = 0.0
    fees: float = 0.0
    aov: float = 0.0
    share: float = 0.0  # % of total revenue

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ChannelMetric":
        return ChannelMetric(
            revenue=as_float(d.get("revenue")),
            orders=as_float(d.get("orders")),
            cogs=as_float(d.get("cogs")),
            fees=as_float(d.get("fees")),
            aov=as_float(d.get("aov")),
            share=as_float(d.get("share")),
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "revenue": self.revenue,
            "orders": self.orders,
            "cogs": self.cogs,
            "fees": self.fees,
            "aov": self.aov,
            "share": self.share,
        }


@dataclass(frozen=True)
class MetricsSnapshot:
    """Precomputed operational aggregate for one tenant.

    Totals are the baseline annual figures the projections start from. The
    snapshot is produced elsewhere and treated as read-only here.
    """
    tenant_id: str
    total_revenue: float = 0.0
    total_cogs: float = 0.0
    total_fees: float = 0.0
    total_orders: float = 0.0
    avg_order_value: float = 0.0
    return_rate: float = 0.0  # %
    monthly_growth_rate: float = 0.0  # %
    channel_metrics: Dict[str, ChannelMetric] = field(default_factory=dict)
    marketing_cost: float = 0.0
    overhead_cost: float = 0.0
    order_count: int = 0
    calculated_at: Optional[datetime] = None

    @property
    def has_data(self) -> bool:
        return self.order_count > 0 or self.total_orders > 0

    @property
    def base_opex(self) -> float:
        return self.total_fees + self.marketing_cost + self.overhead_cost

    def age_seconds(self, now: datetime) -> float:
        if self.calculated_at is None:
            return float("inf")
        return (now - self.calculated_at).total_seconds()

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "MetricsSnapshot":
        """Build from a cache row; accepts snake_case or camelCase keys."""
        def get(snake: str, camel: str) -> Any:
            return d.get(snake, d.get(camel))

        raw_channels = get("channel_metrics", "channelMetrics") or {}
        channels = {str(k): ChannelMetric.from_dict(v or {}) for k, v in raw_channels.items()}
        return MetricsSnapshot(
            tenant_id=str(get("tenant_id", "tenantId") or ""),
            total_revenue=as_float(get("total_revenue", "totalRevenue")),
            total_cogs=as_float(get("total_cogs", "totalCogs")),
            total_fees=as_float(get("total_fees", "totalFees")),
            total_orders=as_float(get("total_orders", "totalOrders")),
            avg_order_value=as_float(get("avg_order_value", "avgOrderValue")),
            return_rate=as_float(get("return_rate", "returnRate")),
            monthly_growth_rate=as_float(get("monthly_growth_rate", "monthlyGrowthRate")),
            channel_metrics=channels,
            marketing_cost=as_float(get("marketing_cost", "marketingCost")),
            overhead_cost=as_float(get("overhead_cost", "overheadCost")),
            order_count=int(as_float(get("order_count", "orderCount"))),
            calculated_at=_parse_ts(get("calculated_at", "calculatedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenantId": self.tenant_id,
            "totalRevenue": self.total_revenue,
            "totalCogs": self.total_cogs,
            "totalFees": self.total_fees,
            "totalOrders": self.total_orders,
            "avgOrderValue": self.avg_order_value,
            "returnRate": self.return_rate,
            "monthlyGrowthRate": self.monthly_growth_rate,
            "channelMetrics": {k: v.to_dict() for k, v in self.channel_metrics.items()},
            "marketingCost": self.marketing_cost,
            "overheadCost": self.overhead_cost,
            "orderCount": self.order_count,
            "calculatedAt": self.calculated_at.isoformat() if self.calculated_at else None,
            "hasData": self.has_data,
        }


def empty_snapshot(tenant_id: str, now: Optional[datetime] = None) -> MetricsSnapshot:
    return MetricsSnapshot(tenant_id=tenant_id, calculated_at=now or utcnow())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        ts = datetime.fromtimestamp(float(value), tz=timezone.utc)
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
