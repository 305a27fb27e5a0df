from __future__ import annotations
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

from whatif.config.env import ReaderConfig, get_reader_config, tenant_segment
from whatif.errors import SnapshotReadError
from whatif.metrics.snapshot import MetricsSnapshot, empty_snapshot, utcnow

logger = logging.getLogger(__name__)

Recompute = Callable[[str], Optional[MetricsSnapshot]]


class SnapshotCache(Protocol):
    def read(self, tenant_id: str) -> Optional[MetricsSnapshot]: ...

    def recompute(self, tenant_id: str) -> None: ...


class InMemorySnapshotCache:
    """Dict-backed cache. `recompute_fn` stands in for the external refresh job."""

    def __init__(self, rows: Dict[str, MetricsSnapshot] | None = None, recompute_fn: Recompute | None = None):
        self._rows: Dict[str, MetricsSnapshot] = dict(rows or {})
        self._recompute_fn = recompute_fn
        self._lock = threading.Lock()

    def put(self, snapshot: MetricsSnapshot) -> None:
        with self._lock:
            self._rows[snapshot.tenant_id] = snapshot

    def read(self, tenant_id: str) -> Optional[MetricsSnapshot]:
        with self._lock:
            return self._rows.get(tenant_id)

    def recompute(self, tenant_id: str) -> None:
        if self._recompute_fn is None:
            return
        fresh = self._recompute_fn(tenant_id)
        if fresh is not None:
            self.put(fresh)


class JsonSnapshotCache:
    """One `<tenant>.json` cache row per tenant under `root`."""

    def __init__(self, root: Path, recompute_fn: Recompute | None = None):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._recompute_fn = recompute_fn

    def _path(self, tenant_id: str) -> Path:
        return self.root / f"{tenant_segment(tenant_id)}.json"

    def read(self, tenant_id: str) -> Optional[MetricsSnapshot]:
        p = self._path(tenant_id)
        if not p.exists():
            return None
        data = json.loads(p.read_text())
        data.setdefault("tenant_id", tenant_id)
        return MetricsSnapshot.from_dict(data)

    def write(self, snapshot: MetricsSnapshot) -> None:
        tmp = self._path(snapshot.tenant_id).with_suffix(".json.tmp")
        tmp.write_text(json.dumps(snapshot.to_dict(), indent=2))
        tmp.replace(self._path(snapshot.tenant_id))

    def recompute(self, tenant_id: str) -> None:
        if self._recompute_fn is None:
            return
        fresh = self._recompute_fn(tenant_id)
        if fresh is not None:
            self.write(fresh)


class SnapshotReader:
    def __init__(
        self,
        cache: SnapshotCache,
        config: ReaderConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cache = cache
        self.config = config or get_reader_config()
        self._clock = clock

    def is_fresh(self, snapshot: MetricsSnapshot, now: datetime | None = None) -> bool:
        return snapshot.age_seconds(now or self._clock()) < self.config.freshness_sec

    def get_base_metrics(self, tenant_id: str) -> MetricsSnapshot:
        """Return the tenant's snapshot, refreshing it once when stale or absent.

        - initial read failure -> SnapshotReadError
        - recompute failure -> logged, then the cache is re-read anyway
        - nothing after the re-read -> empty snapshot (has_data=False)
        """
        try:
            cached = self.cache.read(tenant_id)
        except Exception as e:
            raise SnapshotReadError(f"failed to read metrics snapshot for {tenant_id!r}: {e}") from e

        if cached is not None and self.is_fresh(cached):
            logger.debug("snapshot cache hit tenant=%s orders=%s", tenant_id, cached.order_count)
            return cached

        logger.info("snapshot %s for tenant=%s, recomputing", "stale" if cached else "missing", tenant_id)
        try:
            self.cache.recompute(tenant_id)
        except Exception as e:
            logger.warning("snapshot recompute failed for tenant=%s: %s", tenant_id, e)

        try:
            fresh = self.cache.read(tenant_id)
        except Exception as e:
            logger.warning("snapshot re-read failed for tenant=%s: %s", tenant_id, e)
            fresh = cached

        if fresh is None:
            logger.info("no metrics for tenant=%s, using empty snapshot", tenant_id)
            return empty_snapshot(tenant_id, now=self._clock())
        return fresh
