from __future__ import annotations
import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Protocol

from whatif.config.env import tenant_segment

Row = Dict[str, Any]


class ScenarioBackend(Protocol):
    """Tenant-scoped row storage. Each call is one independent write."""

    def load(self, tenant_id: str) -> List[Row]: ...

    def upsert(self, tenant_id: str, row: Row) -> None: ...

    def delete(self, tenant_id: str, scenario_id: str) -> bool: ...


class InMemoryScenarioBackend:
    def __init__(self):
        self._rows: Dict[str, Dict[str, Row]] = {}
        self._lock = threading.Lock()

    def load(self, tenant_id: str) -> List[Row]:
        with self._lock:
            return [json.loads(json.dumps(r)) for r in self._rows.get(tenant_id, {}).values()]

    def upsert(self, tenant_id: str, row: Row) -> None:
        with self._lock:
            self._rows.setdefault(tenant_id, {})[row["id"]] = json.loads(json.dumps(row))

    def delete(self, tenant_id: str, scenario_id: str) -> bool:
        with self._lock:
            return self._rows.get(tenant_id, {}).pop(scenario_id, None) is not None


class JsonScenarioBackend:
    """One `<root>/<tenant>/scenarios.json` document per tenant.

    Writes go to a temp file and are swapped in with `Path.replace`, so a
    reader never sees a half-written document.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, tenant_id: str) -> Path:
        return self.root / tenant_segment(tenant_id) / "scenarios.json"

    def _read(self, tenant_id: str) -> Dict[str, Row]:
        p = self._path(tenant_id)
        if not p.exists():
            return {}
        data = json.loads(p.read_text())
        return {r["id"]: r for r in data.get("scenarios", [])}

    def _write(self, tenant_id: str, rows: Dict[str, Row]) -> None:
        p = self._path(tenant_id)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(".json.tmp")
        tmp.write_text(json.dumps({"tenant_id": tenant_id, "scenarios": list(rows.values())}, indent=2))
        tmp.replace(p)

    def load(self, tenant_id: str) -> List[Row]:
        with self._lock:
            return list(self._read(tenant_id).values())

    def upsert(self, tenant_id: str, row: Row) -> None:
        with self._lock:
            rows = self._read(tenant_id)
            rows[row["id"]] = row
            self._write(tenant_id, rows)

    def delete(self, tenant_id: str, scenario_id: str) -> bool:
        with self._lock:
            rows = self._read(tenant_id)
            if rows.pop(scenario_id, None) is None:
                return False
            self._write(tenant_id, rows)
            return True
