from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from bi_core.activity import ActivityLog
from bi_core.charts import ChartRenderer
from bi_core.computation import Computation, make_computation
from bi_core.config import Settings, settings as default_settings
from bi_core.export import export_report
from bi_core.loader import IngestReport, Source, ingest_files
from bi_core.models import AnalysisResult
from bi_core.orchestrator import AuditOrchestrator, LiveRefresh
from bi_core.persistence import KeyValueStore, open_store
from bi_core.store import CollectionStore


logger = logging.getLogger(__name__)


class Session:
    """One dashboard session: collection, history, activity log and renderer.

    Everything that the browser app kept in module globals lives here, so
    several sessions (or tests) can run side by side in one process.
    """

    def __init__(
        self,
        persistence: Optional[KeyValueStore] = None,
        config: Optional[Settings] = None,
        computation: Optional[Computation] = None,
    ) -> None:
        self.config = config or default_settings
        self.persistence = persistence if persistence is not None else open_store(self.config.database_url)
        self.activity = ActivityLog()
        self.store = CollectionStore(self.persistence, self.activity, self.config)
        self.orchestrator = AuditOrchestrator(
            self.store,
            self.persistence,
            self.activity,
            computation or make_computation(self.config.computation),
            self.config,
        )
        self.renderer = ChartRenderer()
        self.charts: Dict[str, Dict[str, Any]] = {}
        self._live: Optional[LiveRefresh] = None

    def hydrate(self) -> int:
        return self.store.hydrate()

    def ingest(self, sources: Iterable[Union[Source, Tuple[str, Source]]]) -> IngestReport:
        return ingest_files(sources, self.store, self.activity, config=self.config)

    def remove_dataset(self, dataset_id: str) -> bool:
        removed = self.store.remove(dataset_id)
        if removed:
            self.activity.log(f"Dataset removed: {dataset_id}")
        return removed

    def _render(self, result: AnalysisResult) -> None:
        rows = self.store.select_working_set(result.mode)
        self.charts = self.renderer.render(result, rows)

    def audit(self, x: str, y: str, mode: str = "single") -> AnalysisResult:
        result = self.orchestrator.trigger_audit(x, y, mode)
        self._render(result)
        return result

    def refresh(self) -> Optional[AnalysisResult]:
        result = self.orchestrator.refresh()
        if result is not None:
            self._render(result)
        return result

    @property
    def last_result(self) -> Optional[AnalysisResult]:
        return self.orchestrator.last_result

    def export(self) -> str:
        try:
            report = export_report(self.last_result, self.renderer.get_chart_snapshot())
        except Exception:
            self.activity.log("Export blocked: incomplete intelligence artifact.")
            raise
        self.activity.log(f"Report exported: {self.last_result.track_id}")
        return report

    def start_live_refresh(self) -> None:
        if self._live is None:
            self._live = LiveRefresh(self.refresh, self.config.refresh_interval_s)
        self._live.start()

    def stop_live_refresh(self) -> None:
        if self._live is not None:
            self._live.stop()

    def close(self) -> None:
        self.stop_live_refresh()
        self.orchestrator.computation.shutdown()
