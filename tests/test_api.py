import unittest

import whatif.api.server as server
from whatif.api.orchestrator import RequestSequencer, WhatIfService
from whatif.config.env import EngineConfig
from whatif.errors import RequestSuperseded
from whatif.api.server import app
from whatif.metrics.reader import InMemorySnapshotCache, SnapshotReader
from whatif.metrics.snapshot import ChannelMetric, MetricsSnapshot, utcnow
from whatif.scenarios.backends import InMemoryScenarioBackend
from whatif.scenarios.store import ScenarioStore

M = 1_000_000


class _DownCache:
    def read(self, tenant_id):
        raise IOError("connection refused")

    def recompute(self, tenant_id):
        pass


def _service(cache=None):
    if cache is None:
        cache = InMemorySnapshotCache({
            "t1": MetricsSnapshot(
                tenant_id="t1",
                total_revenue=500 * M,
                total_cogs=325 * M,
                total_fees=5 * M,
                avg_order_value=250_000,
                order_count=2000,
                channel_metrics={
                    "Shopee": ChannelMetric(revenue=300 * M, cogs=195 * M, fees=5 * M, share=60),
                    "Offline Store": ChannelMetric(revenue=200 * M, cogs=130 * M, share=40),
                },
                calculated_at=utcnow(),
            )
        })
    return WhatIfService(
        SnapshotReader(cache),
        ScenarioStore(InMemoryScenarioBackend()),
        engine_config=EngineConfig(default_horizon_months=12, max_horizon_months=36),
    )


class TestWhatIfAPI(unittest.TestCase):
    def setUp(self):
        app.testing = True
        app.config['API_KEY'] = None
        app.config['RATE_LIMIT_N'] = 0
        app.config['WHATIF_SERVICE'] = _service()
        server._recent.clear()
        self.client = app.test_client()

    def _create(self, name="Base", **extra):
        body = {"name": name, "mode": "simple", "parameters": {"revenueChangePct": 10}}
        body.update(extra)
        rv = self.client.post("/tenants/t1/scenarios", json=body)
        self.assertEqual(rv.status_code, 201)
        return rv.get_json()

    def test_metrics_and_defaults(self):
        rv = self.client.get("/tenants/t1/metrics")
        self.assertEqual(rv.status_code, 200)
        self.assertTrue(rv.get_json()["hasData"])

        body = self.client.get("/tenants/t1/defaults").get_json()
        self.assertTrue(body["hasData"])
        self.assertEqual(body["retail"]["costs"]["cogsRatePct"], 65.0)
        self.assertEqual(body["retail"]["channels"]["shopee"]["revenueSharePct"], 60.0)
        self.assertEqual(body["simple"]["revenueChangePct"], 0.0)

    def test_unknown_tenant_gets_presets(self):
        body = self.client.get("/tenants/newco/defaults").get_json()
        self.assertFalse(body["hasData"])
        self.assertEqual(body["retail"]["operations"]["avgOrderValue"], 500000.0)

    def test_project(self):
        rv = self.client.post("/tenants/t1/project", json={
            "mode": "simple",
            "parameters": {"revenueChangePct": 10, "cogsChangePct": 5},
            "horizonMonths": 24,
        })
        self.assertEqual(rv.status_code, 200)
        body = rv.get_json()
        self.assertAlmostEqual(body["projected"]["revenue"], 550 * M, delta=1)
        self.assertAlmostEqual(body["projected"]["cogs"], 341.25 * M, delta=1)
        self.assertEqual(len(body["monthlyTrend"]), 24)
        self.assertIn("breakEvenMonth", body["trendSummary"])

    def test_project_rejects_bad_input(self):
        rv = self.client.post("/tenants/t1/project", json={"mode": "simple", "parameters": {"revenueChangePct": "lots"}})
        self.assertEqual(rv.status_code, 400)
        rv = self.client.post("/tenants/t1/project", json={"mode": "weekly"})
        self.assertEqual(rv.status_code, 400)
        rv = self.client.post("/tenants/t1/project", json={"mode": "simple", "horizonMonths": 99})
        self.assertEqual(rv.status_code, 400)
        rv = self.client.post("/tenants/t1/project", json={"mode": "simple", "horizonMonths": 12.5})
        self.assertEqual(rv.status_code, 400)
        rv = self.client.post("/tenants/t1/project", json={"mode": "simple", "horizonMonths": 6.0})
        self.assertEqual(len(rv.get_json()["monthlyTrend"]), 6)
        rv = self.client.post("/tenants/t1/project", json=[1, 2])
        self.assertEqual(rv.status_code, 400)

    def test_scenario_lifecycle(self):
        a = self._create("Base", isPrimary=True)
        b = self._create("Aggressive", parameters={"revenueChangePct": 30})
        self.assertTrue(a["isPrimary"])
        self.assertEqual(len(a["monthlyTrend"]), 12)
        self.assertAlmostEqual(a["result"]["revenue"], 550 * M, delta=1)

        listed = self.client.get("/tenants/t1/scenarios").get_json()["scenarios"]
        self.assertEqual({s["id"] for s in listed}, {a["id"], b["id"]})

        rv = self.client.patch(f"/tenants/t1/scenarios/{b['id']}", json={"name": "Stretch"})
        self.assertEqual(rv.get_json()["name"], "Stretch")

        # New parameters are re-projected
        rv = self.client.patch(f"/tenants/t1/scenarios/{b['id']}", json={"parameters": {"revenueChangePct": 20}})
        self.assertAlmostEqual(rv.get_json()["result"]["revenue"], 600 * M, delta=1)

        rv = self.client.post(f"/tenants/t1/scenarios/{b['id']}/primary")
        self.assertTrue(rv.get_json()["isPrimary"])
        self.assertFalse(self.client.get(f"/tenants/t1/scenarios/{a['id']}").get_json()["isPrimary"])

        rv = self.client.post(f"/tenants/t1/scenarios/{a['id']}/favorite")
        self.assertTrue(rv.get_json()["isFavorite"])
        listed = self.client.get("/tenants/t1/scenarios").get_json()["scenarios"]
        self.assertEqual(listed[0]["id"], a["id"])

        comparison = self.client.get("/tenants/t1/scenarios/compare").get_json()["comparison"]
        rows = {r["scenarioId"]: r for r in comparison}
        self.assertTrue(rows[b["id"]]["isPrimary"])
        self.assertLess(rows[a["id"]]["revenueVsPrimaryPct"], 0)

        rv = self.client.delete(f"/tenants/t1/scenarios/{a['id']}")
        self.assertEqual(rv.status_code, 204)
        rv = self.client.get(f"/tenants/t1/scenarios/{a['id']}")
        self.assertEqual(rv.status_code, 404)
        self.assertEqual(rv.get_json()["error"], "not_found")

    def test_refresh_reprojects_against_new_snapshot(self):
        a = self._create()
        svc = app.config['WHATIF_SERVICE']
        svc.reader.cache.put(MetricsSnapshot(
            tenant_id="t1", total_revenue=600 * M, total_cogs=390 * M, order_count=2400, calculated_at=utcnow(),
        ))
        # Stored results are untouched until refreshed
        self.assertAlmostEqual(self.client.get(f"/tenants/t1/scenarios/{a['id']}").get_json()["result"]["revenue"], 550 * M, delta=1)
        rv = self.client.post(f"/tenants/t1/scenarios/{a['id']}/refresh")
        self.assertEqual(rv.status_code, 200)
        self.assertAlmostEqual(rv.get_json()["result"]["revenue"], 660 * M, delta=1)

    def test_scenarios_are_tenant_scoped(self):
        a = self._create()
        self.assertEqual(self.client.get(f"/tenants/t2/scenarios/{a['id']}").status_code, 404)
        self.assertEqual(self.client.get("/tenants/t2/scenarios").get_json()["scenarios"], [])

    def test_create_requires_name(self):
        rv = self.client.post("/tenants/t1/scenarios", json={"mode": "simple", "parameters": {}})
        self.assertEqual(rv.status_code, 400)

    def test_exports(self):
        a = self._create()
        rv = self.client.get(f"/tenants/t1/scenarios/{a['id']}/trend.csv")
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(rv.mimetype, "text/csv")
        self.assertEqual(len(rv.get_data(as_text=True).strip().splitlines()), 13)

        rv = self.client.get(f"/tenants/t1/scenarios/{a['id']}/report.md")
        self.assertTrue(rv.get_data(as_text=True).startswith("# Scenario: Base"))

        rv = self.client.get("/tenants/t1/scenarios?format=csv")
        self.assertIn("Base", rv.get_data(as_text=True))

    def test_budget_advice(self):
        rv = self.client.post("/tenants/t1/budget/advice", json={"totalBudget": 100 * M})
        self.assertEqual(rv.status_code, 200)
        body = rv.get_json()
        self.assertEqual({r["channel"] for r in body["recommendations"]}, {"shopee", "offline"})
        self.assertAlmostEqual(sum(r["recommendedShare"] for r in body["recommendations"]), 100.0)

        rv = self.client.post("/tenants/t1/budget/advice", json={
            "totalBudget": 1000,
            "channels": [
                {"key": "shopee", "revenue": 1000, "channelCost": 100, "grossProfit": 400, "growth": 10},
                {"key": "offline", "revenue": 1000, "channelCost": 100, "grossProfit": 100},
            ],
        })
        self.assertEqual(rv.get_json()["recommendations"][0]["channel"], "shopee")

        rv = self.client.post("/tenants/t1/budget/advice", json={"totalBudget": -5})
        self.assertEqual(rv.status_code, 400)

    def test_snapshot_read_failure_is_502(self):
        app.config['WHATIF_SERVICE'] = _service(cache=_DownCache())
        rv = self.client.get("/tenants/t1/metrics")
        self.assertEqual(rv.status_code, 502)

    def test_api_key(self):
        app.config['API_KEY'] = 'secret'
        self.assertEqual(self.client.get("/tenants/t1/metrics").status_code, 401)
        rv = self.client.get("/tenants/t1/metrics", headers={"X-API-Key": "secret"})
        self.assertEqual(rv.status_code, 200)

    def test_rate_limit_on_writes(self):
        app.config['RATE_LIMIT_N'] = 1
        app.config['RATE_LIMIT_WINDOW_SEC'] = 60.0
        self._create("first")
        rv = self.client.post("/tenants/t1/scenarios", json={"name": "second", "mode": "simple"})
        self.assertEqual(rv.status_code, 429)
        self.assertIn("Retry-After", rv.headers)
        # Reads and projections are not limited
        self.assertEqual(self.client.get("/tenants/t1/scenarios").status_code, 200)
        self.assertEqual(self.client.post("/tenants/t1/project", json={"mode": "simple"}).status_code, 200)


class TestRequestSequencer(unittest.TestCase):
    def test_newer_request_supersedes(self):
        svc = _service()
        inner = []

        def slow():
            # A second load starts before this one returns
            inner.append(svc.load_metrics("t1"))
            return "first"

        with self.assertRaises(RequestSuperseded):
            svc.latest_only("metrics:t1", slow)
        self.assertEqual(len(inner), 1)

    def test_cancel(self):
        seq = RequestSequencer()
        tok = seq.begin("k")
        self.assertTrue(seq.is_current(tok))
        seq.cancel("k")
        self.assertFalse(seq.is_current(tok))


if __name__ == '__main__':
    unittest.main()
