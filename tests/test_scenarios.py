import shutil
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from whatif.errors import PersistenceError, ScenarioNotFound, ValidationError
from whatif.forecasting.assumptions import SimpleDelta
from whatif.forecasting.engine import WhatIfResult
from whatif.scenarios.backends import InMemoryScenarioBackend, JsonScenarioBackend
from whatif.scenarios.compare import best_by, compare_to_primary
from whatif.scenarios.store import Scenario, ScenarioDraft, ScenarioStore

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


class _Clock:
    def __init__(self):
        self.n = 0

    def __call__(self):
        self.n += 1
        return T0 + timedelta(seconds=self.n)


def _result(revenue=100.0, ebitda=10.0, margin=30.0, cash=10.0):
    return WhatIfResult(
        revenue=revenue, revenue_change_pct=0.0,
        ebitda=ebitda, ebitda_change_pct=0.0,
        gross_margin=margin, margin_change_pct=0.0,
        projected_cash=cash, cash_change_pct=0.0,
    )


def _draft(name, **kw):
    return ScenarioDraft(name=name, mode="simple", parameters=SimpleDelta(revenue_change_pct=5), result=_result(), **kw)


class _FailingPrimaryBackend(InMemoryScenarioBackend):
    """Fails the write that flags `fail_id` (or, with `fail_any`, any row) as primary."""

    def __init__(self):
        super().__init__()
        self.fail_id = None
        self.fail_any = False

    def upsert(self, tenant_id, row):
        if row.get("isPrimary") and (self.fail_any or row["id"] == self.fail_id):
            raise IOError("disk full")
        super().upsert(tenant_id, row)


class TestScenarioStore(unittest.TestCase):
    def setUp(self):
        self.backend = InMemoryScenarioBackend()
        self.store = ScenarioStore(self.backend, clock=_Clock())

    def test_create_get_and_tenant_isolation(self):
        s = self.store.create("t1", _draft("Base case"), created_by="u1")
        self.assertTrue(s.id.startswith("sc_"))
        self.assertEqual(self.store.get("t1", s.id).name, "Base case")
        self.assertEqual(self.store.get("t1", s.id).parameters, SimpleDelta(revenue_change_pct=5))
        self.assertEqual(self.store.list("t2"), [])
        with self.assertRaises(ScenarioNotFound):
            self.store.get("t2", s.id)
        with self.assertRaises(ScenarioNotFound):
            self.store.delete("t2", s.id)

    def test_list_orders_favorites_then_newest(self):
        a = self.store.create("t1", _draft("a"))
        b = self.store.create("t1", _draft("b"))
        c = self.store.create("t1", _draft("c", is_favorite=True))
        self.assertEqual([s.id for s in self.store.list("t1")], [c.id, b.id, a.id])
        self.store.toggle_favorite("t1", a.id)
        self.assertEqual([s.id for s in self.store.list("t1")], [c.id, a.id, b.id])

    def test_validation(self):
        with self.assertRaises(ValidationError):
            self.store.create("t1", _draft("   "))
        with self.assertRaises(ValidationError):
            self.store.create("t1", ScenarioDraft(name="x", mode="retail", parameters=SimpleDelta(), result=_result()))
        s = self.store.create("t1", _draft("a"))
        with self.assertRaises(ValidationError):
            self.store.update("t1", s.id, name="")
        with self.assertRaises(ValidationError):
            self.store.update("t1", s.id, tenant_id="t2")

    def test_update_and_delete(self):
        s = self.store.create("t1", _draft("a"))
        u = self.store.update("t1", s.id, name="renamed", description="notes")
        self.assertEqual(u.name, "renamed")
        self.assertEqual(u.description, "notes")
        self.assertGreater(u.updated_at, s.updated_at)
        self.assertEqual(u.created_at, s.created_at)
        self.store.delete("t1", s.id)
        with self.assertRaises(ScenarioNotFound):
            self.store.get("t1", s.id)
        with self.assertRaises(ScenarioNotFound):
            self.store.delete("t1", s.id)

    def test_single_primary(self):
        a = self.store.create("t1", _draft("a", is_primary=True))
        b = self.store.create("t1", _draft("b"))
        self.assertEqual(self.store.get_primary("t1").id, a.id)
        self.store.set_primary("t1", b.id)
        primaries = [s.id for s in self.store.list("t1") if s.is_primary]
        self.assertEqual(primaries, [b.id])
        self.store.update("t1", a.id, is_primary=True)
        self.assertEqual(self.store.get_primary("t1").id, a.id)
        self.store.update("t1", a.id, is_primary=False)
        self.assertIsNone(self.store.get_primary("t1"))

    def test_failed_primary_switch_rolls_back(self):
        backend = _FailingPrimaryBackend()
        store = ScenarioStore(backend, clock=_Clock())
        a = store.create("t1", _draft("a", is_primary=True))
        b = store.create("t1", _draft("b"))
        backend.fail_id = b.id
        with self.assertRaises(PersistenceError):
            store.set_primary("t1", b.id)
        self.assertEqual(store.get_primary("t1").id, a.id)
        self.assertFalse(store.get("t1", b.id).is_primary)

    def test_failed_primary_on_create_leaves_nothing_behind(self):
        backend = _FailingPrimaryBackend()
        backend.fail_any = True
        store = ScenarioStore(backend, clock=_Clock())
        with self.assertRaises(PersistenceError):
            store.create("t1", _draft("x", is_primary=True))
        self.assertEqual(store.list("t1"), [])

    def test_failed_primary_on_update_restores_row(self):
        backend = _FailingPrimaryBackend()
        store = ScenarioStore(backend, clock=_Clock())
        a = store.create("t1", _draft("a", is_primary=True))
        b = store.create("t1", _draft("b"))
        backend.fail_id = b.id
        with self.assertRaises(PersistenceError):
            store.update("t1", b.id, name="renamed", is_primary=True)
        self.assertEqual(store.get("t1", b.id), b)
        self.assertEqual(store.get_primary("t1").id, a.id)

    def test_read_repairs_multiple_primaries(self):
        a = self.store.create("t1", _draft("a"))
        b = self.store.create("t1", _draft("b"))
        # Simulate an interleaved writer leaving two primaries behind
        for s in (a, b):
            row = s.to_dict()
            row["isPrimary"] = True
            self.backend.upsert("t1", row)
        with self.assertLogs("whatif.scenarios.store", level="WARNING"):
            rows = self.store.list("t1")
        self.assertEqual([s.id for s in rows if s.is_primary], [b.id])
        stored = [r["id"] for r in self.backend.load("t1") if r["isPrimary"]]
        self.assertEqual(stored, [b.id])

    def test_concurrent_primary_switches_leave_one_primary(self):
        # Two store instances share a backend but not their locks
        other = ScenarioStore(self.backend)
        ids = [self.store.create("t1", _draft(f"s{i}")).id for i in range(4)]

        def worker(store, picks):
            for _ in range(20):
                for sid in picks:
                    store.set_primary("t1", sid)

        threads = [
            threading.Thread(target=worker, args=(self.store, ids[:2])),
            threading.Thread(target=worker, args=(other, ids[2:])),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len([s for s in self.store.list("t1") if s.is_primary]), 1)


class TestJsonScenarioBackend(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_persists_per_tenant(self):
        store = ScenarioStore(JsonScenarioBackend(self.tmp))
        s = store.create("t1", _draft("a"))
        self.assertTrue((self.tmp / "t1" / "scenarios.json").exists())
        reopened = ScenarioStore(JsonScenarioBackend(self.tmp))
        self.assertEqual(reopened.get("t1", s.id), s)
        self.assertEqual(reopened.list("t2"), [])

    def test_rejects_path_tenant(self):
        store = ScenarioStore(JsonScenarioBackend(self.tmp))
        with self.assertRaises(PersistenceError):
            store.create("../escape", _draft("a"))


class TestCompare(unittest.TestCase):
    def _scenario(self, sid, result, primary=False):
        return Scenario(
            id=sid, tenant_id="t1", name=sid, mode="simple", parameters=SimpleDelta(),
            result=result, created_by=None, created_at=T0, updated_at=T0, is_primary=primary,
        )

    def test_against_primary(self):
        rows = compare_to_primary([
            self._scenario("p", _result(), primary=True),
            self._scenario("x", _result(revenue=110, ebitda=5, margin=25, cash=15)),
        ])
        x = rows[1]
        self.assertTrue(rows[0].is_primary)
        self.assertEqual(rows[0].ebitda_vs_primary_pct, 0.0)
        self.assertAlmostEqual(x.revenue_vs_primary_pct, 10.0)
        self.assertAlmostEqual(x.ebitda_vs_primary_pct, -50.0)
        self.assertAlmostEqual(x.margin_vs_primary_pts, -5.0)
        self.assertAlmostEqual(x.cash_vs_primary_pct, 50.0)
        self.assertEqual(best_by(rows, "revenue").scenario_id, "x")

    def test_without_primary(self):
        rows = compare_to_primary([self._scenario("x", _result(revenue=110))])
        self.assertFalse(rows[0].is_primary)
        self.assertEqual(rows[0].revenue_vs_primary_pct, 0.0)
        self.assertIsNone(best_by([]))


if __name__ == '__main__':
    unittest.main()
