from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


@dataclass(frozen=True)
class AdvisoryThresholds:
    operational_concentration_pct: float = 50.0
    dependency_concentration_pct: float = 40.0
    steady_volume_shift_pct: float = 10.0
    monitor_volume_shift_pct: float = 15.0
    precision_cv: float = 0.5
    stability_cv: float = 0.8
    reduce_cv: float = 1.2
    dominance_mean_multiple: float = 5.0
    relational_lock_correlation: float = 0.7
    moderate_correlation: float = 0.4


@dataclass(frozen=True)
class Settings:
    worker_timeout_s: float = 10.0
    refresh_interval_s: float = 60.0
    history_window: int = 5
    schema_sample_rows: int = 10
    variance_sample_rows: int = 100
    computation: str = "thread"
    database_url: Optional[str] = None
    log_level: str = "INFO"
    thresholds: AdvisoryThresholds = field(default_factory=AdvisoryThresholds)


def _as_float(raw: Optional[str], default: float) -> float:
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _as_int(raw: Optional[str], default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        return max(1, int(raw))
    except Exception:
        return default


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    computation = (env.get("BI_COMPUTATION") or "thread").strip().lower()
    if computation not in {"thread", "process", "inline"}:
        computation = "thread"
    return Settings(
        worker_timeout_s=_as_float(env.get("BI_WORKER_TIMEOUT_S"), 10.0),
        refresh_interval_s=_as_float(env.get("BI_REFRESH_INTERVAL_S"), 60.0),
        history_window=_as_int(env.get("BI_HISTORY_WINDOW"), 5),
        schema_sample_rows=_as_int(env.get("BI_SCHEMA_SAMPLE_ROWS"), 10),
        variance_sample_rows=_as_int(env.get("BI_VARIANCE_SAMPLE_ROWS"), 100),
        computation=computation,
        database_url=env.get("BI_DATABASE_URL") or None,
        log_level=(env.get("BI_LOG_LEVEL") or "INFO").upper(),
    )


settings = load_settings()
