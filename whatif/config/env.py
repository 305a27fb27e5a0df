from __future__ import annotations
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ReaderConfig:
    freshness_sec: float = 3600.0


def get_reader_config() -> ReaderConfig:
    return ReaderConfig(freshness_sec=float(os.getenv("WHATIF_SNAPSHOT_FRESHNESS_SEC", "3600")))


@dataclass(frozen=True)
class StoreConfig:
    data_dir: Path = Path("./whatif_data")


def get_store_config() -> StoreConfig:
    return StoreConfig(data_dir=Path(os.getenv("WHATIF_DATA_DIR", "./whatif_data")).resolve())


@dataclass(frozen=True)
class EngineConfig:
    default_horizon_months: int = 12
    max_horizon_months: int = 60


def get_engine_config() -> EngineConfig:
    return EngineConfig(
        default_horizon_months=int(os.getenv("WHATIF_DEFAULT_HORIZON", "12")),
        max_horizon_months=int(os.getenv("WHATIF_MAX_HORIZON", "60")),
    )


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    fmt: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logging_config() -> LoggingConfig:
    return LoggingConfig(level=os.getenv("WHATIF_LOG_LEVEL", "INFO").upper())


def configure_logging(cfg: LoggingConfig | None = None) -> None:
    cfg = cfg or get_logging_config()
    logging.basicConfig(level=getattr(logging, cfg.level, logging.INFO), format=cfg.fmt)


_TENANT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def tenant_segment(tenant_id: str) -> str:
    """Tenant id checked for use as a file or directory name."""
    if not _TENANT_ID_RE.match(tenant_id or "") or ".." in tenant_id:
        raise ValueError(f"invalid tenant id: {tenant_id!r}")
    return tenant_id
