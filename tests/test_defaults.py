import unittest

from whatif.forecasting.assumptions import SimpleDelta
from whatif.forecasting.defaults import KNOWN_CHANNELS, build_defaults, preset_retail
from whatif.metrics.snapshot import ChannelMetric, MetricsSnapshot


class TestBuildDefaults(unittest.TestCase):
    def test_no_data_uses_preset(self):
        d = build_defaults(MetricsSnapshot(tenant_id="t1"))
        self.assertFalse(d.has_data)
        self.assertEqual(d.simple, SimpleDelta())
        self.assertEqual(d.retail, preset_retail())
        self.assertEqual(d.retail.costs.cogs_rate_pct, 65.0)
        self.assertTrue(all(c.revenue_share_pct == 0 for c in d.retail.channels.values()))
        self.assertFalse(d.retail.channels["tiki"].enabled)
        self.assertEqual(d.retail.operations.customer_acquisition_cost, 80_000.0)
        self.assertEqual(d.retail.operations.repeat_purchase_rate_pct, 25.0)
        self.assertFalse(d.retail.expansion.enabled)
        self.assertEqual(d.retail.expansion.target_stores, 10)

    def test_preset_is_not_shared_between_calls(self):
        a = preset_retail()
        a.costs.per_channel_marketing_pct["online"] = 99.0
        a.channels["online"] = None
        b = preset_retail()
        self.assertEqual(b.costs.per_channel_marketing_pct["online"], 10.0)
        self.assertIsNotNone(b.channels["online"])

    def test_derived_from_snapshot(self):
        snap = MetricsSnapshot(
            tenant_id="t1",
            total_revenue=1000.0,
            total_cogs=600.0,
            avg_order_value=200_000.0,
            return_rate=2.0,
            monthly_growth_rate=4.0,
            overhead_cost=1_000_000.0,
            order_count=10,
            channel_metrics={
                "Shopee Mall": ChannelMetric(revenue=600.0, fees=30.0, share=60.0),
                "Website": ChannelMetric(revenue=400.0, share=40.0),
            },
        )
        d = build_defaults(snap)
        r = d.retail
        self.assertTrue(d.has_data)
        self.assertEqual(list(r.channels), list(KNOWN_CHANNELS))
        self.assertEqual(r.channels["shopee"].revenue_share_pct, 60.0)
        self.assertEqual(r.channels["online"].revenue_share_pct, 40.0)
        self.assertTrue(r.channels["shopee"].enabled)
        self.assertFalse(r.channels["offline"].enabled)
        self.assertTrue(all(c.growth_rate_pct == 4.0 for c in r.channels.values()))

        self.assertEqual(r.costs.cogs_rate_pct, 60.0)
        self.assertEqual(r.costs.marketplace_commission_pct["shopee"], 5.0)
        self.assertEqual(r.costs.marketplace_commission_pct["tiktok"], 8.0)
        self.assertEqual(r.costs.shipping_cost_per_order, 10_000.0)
        self.assertEqual(r.costs.packaging_cost_per_order, 2_000.0)
        self.assertEqual(r.costs.offline_rent_cost, 300_000.0)

        self.assertEqual(r.operations.avg_order_value, 200_000.0)
        self.assertEqual(r.operations.return_rate_pct, 2.0)
        self.assertEqual(r.operations.return_cost_pct, 10.0)
        self.assertEqual(r.operations.customer_acquisition_cost, 80_000.0)
        self.assertFalse(r.expansion.enabled)
        self.assertEqual(r.overhead.avg_staff_cost, 133_333.0)
        self.assertEqual(r.overhead.warehouse_rent, 150_000.0)
        self.assertEqual(r.overhead.tech_infra_cost, 150_000.0)

    def test_orders_without_revenue(self):
        d = build_defaults(MetricsSnapshot(tenant_id="t1", order_count=5))
        self.assertTrue(d.has_data)
        self.assertEqual(d.retail.costs.cogs_rate_pct, 65.0)
        self.assertTrue(all(c.revenue_share_pct == 0 for c in d.retail.channels.values()))

    def test_unknown_channel_kept_after_roster(self):
        snap = MetricsSnapshot(
            tenant_id="t1",
            total_revenue=100.0,
            order_count=1,
            channel_metrics={"Facebook Shop": ChannelMetric(revenue=100.0, share=100.0)},
        )
        r = build_defaults(snap).retail
        self.assertEqual(list(r.channels)[-1], "facebook shop")
        self.assertTrue(r.channels["facebook shop"].enabled)
        self.assertEqual(r.channels["facebook shop"].revenue_share_pct, 100.0)


if __name__ == '__main__':
    unittest.main()
