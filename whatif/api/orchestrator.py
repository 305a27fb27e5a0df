from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar
import logging
import threading

from whatif.advisor.budget import BudgetAdvice, ChannelPerformance, advise_budget, channels_from_snapshot
from whatif.config.env import EngineConfig, get_engine_config, get_reader_config, get_store_config
from whatif.errors import RequestSuperseded, ValidationError
from whatif.forecasting.assumptions import ScenarioParameters
from whatif.forecasting.defaults import ParameterDefaults, build_defaults
from whatif.forecasting.engine import Projection, project
from whatif.metrics.reader import JsonSnapshotCache, SnapshotReader
from whatif.metrics.snapshot import MetricsSnapshot
from whatif.scenarios.backends import JsonScenarioBackend
from whatif.scenarios.compare import ComparisonRow, compare_to_primary
from whatif.scenarios.store import Scenario, ScenarioDraft, ScenarioStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RequestToken:
    key: str
    seq: int


class RequestSequencer:
    """Latest-wins bookkeeping for overlapping requests.

    Each `begin(key)` supersedes every earlier token for that key; a caller
    holding an older token discards its result. `cancel(key)` supersedes all
    in-flight tokens without starting a new request (e.g. view closed).
    """

    def __init__(self):
        self._latest: Dict[str, int] = {}
        self._lock = threading.Lock()

    def begin(self, key: str) -> RequestToken:
        with self._lock:
            seq = self._latest.get(key, 0) + 1
            self._latest[key] = seq
            return RequestToken(key=key, seq=seq)

    def is_current(self, token: RequestToken) -> bool:
        with self._lock:
            return self._latest.get(token.key) == token.seq

    def cancel(self, key: str) -> None:
        with self._lock:
            self._latest[key] = self._latest.get(key, 0) + 1


class WhatIfService:
    """In-process entry points for the what-if screens.

    Every call takes the tenant explicitly; nothing tenant- or date-specific is
    held between calls.
    """

    def __init__(
        self,
        reader: SnapshotReader,
        store: ScenarioStore,
        engine_config: EngineConfig | None = None,
        sequencer: RequestSequencer | None = None,
    ):
        self.reader = reader
        self.store = store
        self.engine_config = engine_config or get_engine_config()
        self.sequencer = sequencer or RequestSequencer()

    # -- superseding requests ------------------------------------------

    def latest_only(self, key: str, fn: Callable[[], T]) -> T:
        """Run `fn`; raise RequestSuperseded if a newer request for `key` began meanwhile."""
        token = self.sequencer.begin(key)
        out = fn()
        if not self.sequencer.is_current(token):
            logger.debug("discarding stale result for %s (seq=%d)", key, token.seq)
            raise RequestSuperseded(f"request {key!r} #{token.seq} was superseded")
        return out

    # -- metrics & defaults --------------------------------------------

    def load_metrics(self, tenant_id: str) -> MetricsSnapshot:
        return self.latest_only(f"metrics:{tenant_id}", lambda: self.reader.get_base_metrics(tenant_id))

    def load_defaults(self, tenant_id: str) -> ParameterDefaults:
        return build_defaults(self.load_metrics(tenant_id))

    # -- projection ------------------------------------------------------

    def _horizon(self, horizon_months: Optional[int]) -> int:
        h = self.engine_config.default_horizon_months if horizon_months is None else int(horizon_months)
        if not 1 <= h <= self.engine_config.max_horizon_months:
            raise ValidationError(
                f"horizonMonths must be between 1 and {self.engine_config.max_horizon_months}"
            )
        return h

    def simulate(
        self,
        tenant_id: str,
        mode: str,
        parameters: ScenarioParameters,
        horizon_months: Optional[int] = None,
        snapshot: Optional[MetricsSnapshot] = None,
    ) -> Projection:
        h = self._horizon(horizon_months)
        snap = snapshot if snapshot is not None else self.reader.get_base_metrics(tenant_id)
        return project(snap, mode, parameters, h)

    # -- scenarios -------------------------------------------------------

    def list_scenarios(self, tenant_id: str) -> List[Scenario]:
        return self.latest_only(f"scenarios:{tenant_id}", lambda: self.store.list(tenant_id))

    def save_scenario(
        self,
        tenant_id: str,
        name: str,
        mode: str,
        parameters: ScenarioParameters,
        created_by: Optional[str] = None,
        description: Optional[str] = None,
        horizon_months: Optional[int] = None,
        is_favorite: bool = False,
        is_primary: bool = False,
    ) -> Scenario:
        """Project, then store parameters together with the results they produced."""
        proj = self.simulate(tenant_id, mode, parameters, horizon_months)
        draft = ScenarioDraft(
            name=name,
            description=description,
            mode=mode,
            parameters=parameters,
            result=proj.result,
            monthly_trend=proj.trend,
            is_favorite=is_favorite,
            is_primary=is_primary,
        )
        return self.store.create(tenant_id, draft, created_by=created_by)

    def update_scenario(
        self,
        tenant_id: str,
        scenario_id: str,
        horizon_months: Optional[int] = None,
        **changes: Any,
    ) -> Scenario:
        """Partial update. New parameters are re-projected so results stay in step."""
        if "parameters" in changes or "mode" in changes:
            current = self.store.get(tenant_id, scenario_id)
            mode = changes.get("mode", current.mode)
            params = changes.get("parameters", current.parameters)
            proj = self.simulate(tenant_id, mode, params, horizon_months or (len(current.monthly_trend or []) or None))
            changes.setdefault("result", proj.result)
            changes.setdefault("monthly_trend", proj.trend)
        return self.store.update(tenant_id, scenario_id, **changes)

    def refresh_scenario(self, tenant_id: str, scenario_id: str, horizon_months: Optional[int] = None) -> Scenario:
        """Re-project a stored scenario against the current snapshot."""
        current = self.store.get(tenant_id, scenario_id)
        h = horizon_months or (len(current.monthly_trend or []) or None)
        proj = self.simulate(tenant_id, current.mode, current.parameters, h)
        return self.store.update(tenant_id, scenario_id, result=proj.result, monthly_trend=proj.trend)

    def delete_scenario(self, tenant_id: str, scenario_id: str) -> None:
        self.store.delete(tenant_id, scenario_id)

    def set_primary(self, tenant_id: str, scenario_id: str) -> Scenario:
        return self.store.set_primary(tenant_id, scenario_id)

    def toggle_favorite(self, tenant_id: str, scenario_id: str) -> Scenario:
        return self.store.toggle_favorite(tenant_id, scenario_id)

    def compare(self, tenant_id: str) -> List[ComparisonRow]:
        return compare_to_primary(self.store.list(tenant_id))

    # -- budget ----------------------------------------------------------

    def budget_advice(
        self,
        tenant_id: str,
        total_budget: float,
        channels: Optional[List[ChannelPerformance]] = None,
        max_shift_pct: float = 20.0,
    ) -> BudgetAdvice:
        if channels is None:
            snap = self.reader.get_base_metrics(tenant_id)
            channels = channels_from_snapshot(snap, build_defaults(snap).retail)
        return advise_budget(channels, total_budget, max_shift_pct=max_shift_pct)


def build_default_service() -> WhatIfService:
    """Service over JSON files under WHATIF_DATA_DIR (snapshots/ and scenarios/)."""
    data_dir = get_store_config().data_dir
    reader = SnapshotReader(JsonSnapshotCache(data_dir / "snapshots"), config=get_reader_config())
    store = ScenarioStore(JsonScenarioBackend(data_dir / "scenarios"))
    logger.info("what-if service using data dir %s", data_dir)
    return WhatIfService(reader, store)
