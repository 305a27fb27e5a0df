from __future__ import annotations
import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from whatif.errors import PersistenceError, ScenarioNotFound, ValidationError
from whatif.forecasting.assumptions import (
    ScenarioParameters,
    check_mode,
    parameters_from_dict,
    parameters_to_dict,
)
from whatif.forecasting.engine import WhatIfResult
from whatif.forecasting.trend import MonthlyTrendPoint
from whatif.metrics.snapshot import utcnow
from whatif.scenarios.backends import Row, ScenarioBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Scenario:
    id: str
    tenant_id: str
    name: str
    mode: str
    parameters: ScenarioParameters
    result: WhatIfResult
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    monthly_trend: Optional[List[MonthlyTrendPoint]] = None
    is_favorite: bool = False
    is_primary: bool = False

    def to_dict(self) -> Row:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "mode": self.mode,
            "parameters": parameters_to_dict(self.parameters),
            "result": self.result.to_dict(),
            "monthlyTrend": [p.to_dict() for p in self.monthly_trend] if self.monthly_trend is not None else None,
            "isFavorite": self.is_favorite,
            "isPrimary": self.is_primary,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @staticmethod
    def from_dict(d: Row) -> "Scenario":
        mode = d.get("mode") or "simple"
        trend = d.get("monthlyTrend")
        return Scenario(
            id=d["id"],
            tenant_id=d["tenantId"],
            name=d["name"],
            description=d.get("description"),
            mode=mode,
            parameters=parameters_from_dict(mode, d.get("parameters")),
            result=WhatIfResult.from_dict(d.get("result") or {}),
            monthly_trend=[MonthlyTrendPoint.from_dict(p) for p in trend] if trend is not None else None,
            is_favorite=bool(d.get("isFavorite")),
            is_primary=bool(d.get("isPrimary")),
            created_by=d.get("createdBy"),
            created_at=datetime.fromisoformat(d["createdAt"]),
            updated_at=datetime.fromisoformat(d["updatedAt"]),
        )


@dataclass(frozen=True)
class ScenarioDraft:
    """What a caller supplies to create a scenario. Results are stored as given."""
    name: str
    mode: str
    parameters: ScenarioParameters
    result: WhatIfResult
    description: Optional[str] = None
    monthly_trend: Optional[List[MonthlyTrendPoint]] = None
    is_favorite: bool = False
    is_primary: bool = False


_UPDATABLE = {"name", "description", "mode", "parameters", "result", "monthly_trend", "is_favorite", "is_primary"}


def _check_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("scenario name is required")
    return name.strip()


class ScenarioStore:
    """Tenant-scoped scenario CRUD with a single primary per tenant.

    Writes are last-write-wins. `set_primary` is two backend writes (clear the
    old primary, flag the new one) under a per-tenant lock, with the first
    write undone if the second fails. A create or update that also asks for
    primary is undone the same way when the switch fails. Writers in other
    processes can still interleave, so reads repair a tenant that ends up
    with several primaries.
    """

    def __init__(self, backend: ScenarioBackend, clock: Callable[[], datetime] = utcnow):
        self.backend = backend
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, tenant_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(tenant_id, threading.Lock())

    # -- backend access -------------------------------------------------

    def _load(self, tenant_id: str) -> List[Scenario]:
        try:
            rows = self.backend.load(tenant_id)
        except Exception as e:
            raise PersistenceError(f"failed to load scenarios for {tenant_id!r}: {e}") from e
        return [Scenario.from_dict(r) for r in rows if r.get("tenantId") == tenant_id]

    def _write(self, s: Scenario) -> None:
        try:
            self.backend.upsert(s.tenant_id, s.to_dict())
        except Exception as e:
            raise PersistenceError(f"failed to save scenario {s.id!r}: {e}") from e

    def _find(self, tenant_id: str, scenario_id: str) -> Scenario:
        for s in self._load(tenant_id):
            if s.id == scenario_id:
                return s
        raise ScenarioNotFound(tenant_id, scenario_id)

    # -- reads ------------------------------------------------------------

    def list(self, tenant_id: str) -> List[Scenario]:
        """Favorites first, then newest first."""
        with self._lock(tenant_id):
            rows = self._reconcile(tenant_id, self._load(tenant_id))
        return sorted(rows, key=lambda s: (not s.is_favorite, -s.created_at.timestamp(), s.id))

    def get(self, tenant_id: str, scenario_id: str) -> Scenario:
        for s in self.list(tenant_id):
            if s.id == scenario_id:
                return s
        raise ScenarioNotFound(tenant_id, scenario_id)

    def get_primary(self, tenant_id: str) -> Optional[Scenario]:
        for s in self.list(tenant_id):
            if s.is_primary:
                return s
        return None

    def _reconcile(self, tenant_id: str, rows: List[Scenario]) -> List[Scenario]:
        primaries = [s for s in rows if s.is_primary]
        if len(primaries) <= 1:
            return rows
        keep = max(primaries, key=lambda s: (s.updated_at, s.id))
        logger.warning(
            "tenant=%s had %d primary scenarios; keeping %s", tenant_id, len(primaries), keep.id
        )
        out: List[Scenario] = []
        for s in rows:
            if s.is_primary and s.id != keep.id:
                s = replace(s, is_primary=False)
                try:
                    self._write(s)
                except PersistenceError as e:
                    # Read still reports a single primary; the next read retries the repair.
                    logger.warning("could not clear stale primary %s: %s", s.id, e)
            out.append(s)
        return out

    # -- writes -----------------------------------------------------------

    def create(self, tenant_id: str, draft: ScenarioDraft, created_by: Optional[str] = None) -> Scenario:
        name = _check_name(draft.name)
        check_mode(draft.mode, draft.parameters)
        now = self._clock()
        s = Scenario(
            id=f"sc_{uuid.uuid4().hex[:12]}",
            tenant_id=tenant_id,
            name=name,
            description=draft.description,
            mode=draft.mode,
            parameters=draft.parameters,
            result=draft.result,
            monthly_trend=list(draft.monthly_trend) if draft.monthly_trend is not None else None,
            is_favorite=draft.is_favorite,
            is_primary=False,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        with self._lock(tenant_id):
            self._write(s)
            if draft.is_primary:
                try:
                    s = self._set_primary_locked(tenant_id, s.id)
                except PersistenceError:
                    self._discard(tenant_id, s.id)
                    raise
            logger.info("created scenario %s (%s) for tenant=%s", s.id, s.mode, tenant_id)
        return s

    def update(self, tenant_id: str, scenario_id: str, **changes: Any) -> Scenario:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(f"cannot update fields: {sorted(unknown)}")
        if "name" in changes:
            changes["name"] = _check_name(changes["name"])
        make_primary = changes.pop("is_primary", None)

        with self._lock(tenant_id):
            current = self._find(tenant_id, scenario_id)
            if make_primary is False and current.is_primary:
                changes["is_primary"] = False
            updated = replace(current, updated_at=self._clock(), **changes)
            check_mode(updated.mode, updated.parameters)
            if changes:
                self._write(updated)
            if make_primary:
                try:
                    updated = self._set_primary_locked(tenant_id, scenario_id)
                except PersistenceError:
                    if changes:
                        self._rollback([current])
                    raise
        return updated

    def toggle_favorite(self, tenant_id: str, scenario_id: str) -> Scenario:
        with self._lock(tenant_id):
            current = self._find(tenant_id, scenario_id)
            updated = replace(current, is_favorite=not current.is_favorite, updated_at=self._clock())
            self._write(updated)
        return updated

    def delete(self, tenant_id: str, scenario_id: str) -> None:
        with self._lock(tenant_id):
            try:
                removed = self.backend.delete(tenant_id, scenario_id)
            except Exception as e:
                raise PersistenceError(f"failed to delete scenario {scenario_id!r}: {e}") from e
        if not removed:
            raise ScenarioNotFound(tenant_id, scenario_id)
        logger.info("deleted scenario %s for tenant=%s", scenario_id, tenant_id)

    def set_primary(self, tenant_id: str, scenario_id: str) -> Scenario:
        with self._lock(tenant_id):
            return self._set_primary_locked(tenant_id, scenario_id)

    def _set_primary_locked(self, tenant_id: str, scenario_id: str) -> Scenario:
        rows = self._load(tenant_id)
        target = next((s for s in rows if s.id == scenario_id), None)
        if target is None:
            raise ScenarioNotFound(tenant_id, scenario_id)

        now = self._clock()
        previous = [s for s in rows if s.is_primary and s.id != scenario_id]
        cleared: List[Scenario] = []
        try:
            # Step 1: clear every other primary.
            for s in previous:
                self._write(replace(s, is_primary=False, updated_at=now))
                cleared.append(s)
            # Step 2: flag the new one.
            new_primary = replace(target, is_primary=True, updated_at=now)
            self._write(new_primary)
        except PersistenceError:
            self._rollback(cleared)
            raise
        logger.info("scenario %s is now primary for tenant=%s", scenario_id, tenant_id)
        return new_primary

    def _discard(self, tenant_id: str, scenario_id: str) -> None:
        try:
            self.backend.delete(tenant_id, scenario_id)
        except Exception as e:
            logger.error("could not remove half-created scenario %s: %s", scenario_id, e)

    def _rollback(self, cleared: List[Scenario]) -> None:
        for s in cleared:
            try:
                self._write(s)
            except PersistenceError as e:
                # Zero primaries is the accepted degraded state.
                logger.error("rollback of primary flag on %s failed: %s", s.id, e)
