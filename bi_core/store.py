from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from bi_core.activity import ActivityLog
from bi_core.config import Settings, settings as default_settings
from bi_core.errors import PersistenceFailure
from bi_core.models import MODES, Dataset, Row
from bi_core.persistence import KeyValueStore
from bi_core.statistics import coerce_series


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reconciliation:
    all_headers: List[str] = field(default_factory=list)
    shared_headers: List[str] = field(default_factory=list)
    total_rows: int = 0
    estimated_memory_mb: float = 0.0
    schemas_by_id: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    readiness: int = 0


def _check_mode(mode: str) -> str:
    if mode not in MODES:
        raise ValueError(f"Unknown combination mode {mode!r}; expected one of {MODES}")
    return mode


class CollectionStore:
    """In-memory dataset collection. Persistence mirrors it on a best-effort basis."""

    def __init__(
        self,
        persistence: Optional[KeyValueStore] = None,
        activity: Optional[ActivityLog] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self._datasets: Dict[str, Dataset] = {}
        self._lock = threading.RLock()
        self.persistence = persistence
        self.activity = activity
        self.config = config or default_settings

    def _persist(self, op: str, fn) -> None:
        if self.persistence is None:
            return
        try:
            fn()
        except PersistenceFailure as exc:
            logger.warning("Persistence %s failed: %s", op, exc.message)
            if self.activity is not None:
                self.activity.log(f"Persistence failure ({op}): {exc.message}")
        except Exception as exc:
            logger.exception("Persistence %s failed", op)
            if self.activity is not None:
                self.activity.log(f"Persistence failure ({op}): {exc}")

    def add(self, dataset: Dataset) -> None:
        with self._lock:
            self._datasets.pop(dataset.id, None)
            self._datasets[dataset.id] = dataset
        self._persist("save_dataset", lambda: self.persistence.put("datasets", dataset.to_dict()))

    def remove(self, dataset_id: str) -> bool:
        with self._lock:
            removed = self._datasets.pop(dataset_id, None) is not None
        self._persist("delete_dataset", lambda: self.persistence.delete("datasets", dataset_id))
        return removed

    def clear(self) -> None:
        with self._lock:
            self._datasets.clear()
        self._persist("clear", lambda: self.persistence.clear())

    def hydrate(self) -> int:
        if self.persistence is None:
            return 0
        try:
            records = self.persistence.get_all("datasets")
        except Exception as exc:
            logger.warning("Could not hydrate collection: %s", exc)
            if self.activity is not None:
                self.activity.log(f"Persistence failure (hydrate): {exc}")
            return 0
        loaded = 0
        with self._lock:
            for raw in records:
                try:
                    ds = Dataset.from_dict(raw)
                except Exception:
                    logger.exception("Skipping unreadable persisted dataset")
                    continue
                self._datasets.pop(ds.id, None)
                self._datasets[ds.id] = ds
                loaded += 1
        return loaded

    def get(self, dataset_id: str) -> Optional[Dataset]:
        with self._lock:
            return self._datasets.get(dataset_id)

    def get_all(self) -> Dict[str, Dataset]:
        with self._lock:
            return dict(self._datasets)

    def __len__(self) -> int:
        with self._lock:
            return len(self._datasets)

    def latest(self) -> Optional[Dataset]:
        with self._lock:
            if not self._datasets:
                return None
            return next(reversed(self._datasets.values()))

    def select_working_set(self, mode: str = "single") -> List[Row]:
        _check_mode(mode)
        with self._lock:
            datasets = list(self._datasets.values())
        if not datasets:
            return []
        if mode == "union":
            return [row for ds in datasets for row in ds.rows]
        # "compare" has no dedicated view yet and behaves like "single".
        return list(datasets[-1].rows)

    def numeric_columns(self, mode: str = "single") -> List[str]:
        _check_mode(mode)
        with self._lock:
            datasets = list(self._datasets.values())
        if mode != "union":
            datasets = datasets[-1:]
        out: List[str] = []
        for ds in datasets:
            for col in ds.schema.numerical:
                if col not in out:
                    out.append(col)
        return out

    def reconcile(self, mode: str = "single") -> Reconciliation:
        _check_mode(mode)
        with self._lock:
            datasets = list(self._datasets.values())
        if not datasets:
            return Reconciliation()
        shared = list(datasets[0].headers)
        all_headers: List[str] = []
        for ds in datasets:
            shared = [h for h in shared if h in ds.headers]
            for h in ds.headers:
                if h not in all_headers:
                    all_headers.append(h)
        serialized = json.dumps({ds.id: ds.to_dict() for ds in datasets}, default=str)
        return Reconciliation(
            all_headers=all_headers,
            shared_headers=shared,
            total_rows=sum(len(ds.rows) for ds in datasets),
            estimated_memory_mb=round(len(serialized) / (1024 * 1024), 1),
            schemas_by_id={ds.id: ds.schema.to_dict() for ds in datasets},
            readiness=100,
        )

    def coordinate_candidates(self) -> Dict[str, str]:
        ds = self.latest()
        if ds is None:
            return {"x": "", "y": "", "z": ""}
        schema = ds.schema
        if schema.temporal:
            x = schema.temporal[0]
        elif schema.categorical:
            x = schema.categorical[0]
        else:
            x = ds.headers[0] if ds.headers else ""

        y = ""
        z = ""
        if schema.numerical:
            sample = pd.DataFrame.from_records(ds.rows[: self.config.variance_sample_rows])
            best_var = -1.0
            y = schema.numerical[0]
            for col in schema.numerical:
                if col not in sample.columns:
                    continue
                vals = coerce_series(sample[col])
                variance = float(((vals - vals.mean()) ** 2).sum()) if len(vals) else 0.0
                if variance > best_var:
                    best_var = variance
                    y = col
            z = next((c for c in schema.numerical if c != y), "")
        return {"x": x, "y": y, "z": z}

    def org_summary(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            datasets = list(self._datasets.values())
        if not datasets:
            return None
        total_rows = sum(len(ds.rows) for ds in datasets)
        header_freq = Counter(h for ds in datasets for h in ds.headers)
        shared_count = sum(1 for v in header_freq.values() if v == len(datasets))
        integrity = min(100.0, shared_count / (len(header_freq) or 1) * 100 + 50)
        return {
            "dataset_count": len(datasets),
            "total_rows": total_rows,
            "avg_rows": total_rows / len(datasets),
            "memory_mb": self.reconcile("union").estimated_memory_mb,
            "top_header": header_freq.most_common(1)[0][0] if header_freq else "N/A",
            "integrity_status": "OPTIMAL" if integrity > 80 else "STABLE",
            "activation_status": "MULTI_SOURCE_ACTIVE" if len(datasets) >= 2 else "STAGING",
        }
