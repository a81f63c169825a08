from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from bi_core.activity import ActivityLog
from bi_core.audit import AuditPayload, run_audit_logic
from bi_core.computation import Computation, ComputationTimeout, InProcessComputation, first_of
from bi_core.config import Settings, settings as default_settings
from bi_core.errors import ValidationError
from bi_core.models import AnalysisResult, Row
from bi_core.persistence import KeyValueStore
from bi_core.statistics import content_hash
from bi_core.store import CollectionStore


logger = logging.getLogger(__name__)

AuditKey = Tuple[str, str, str, str]


class AuditState(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    BLOCKED = "BLOCKED"
    COMPUTING = "COMPUTING"
    RENDERED = "RENDERED"


class AuditOrchestrator:
    def __init__(
        self,
        store: CollectionStore,
        persistence: Optional[KeyValueStore] = None,
        activity: Optional[ActivityLog] = None,
        computation: Optional[Computation] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.persistence = persistence
        self.activity = activity if activity is not None else ActivityLog()
        self.computation = computation or InProcessComputation()
        self.config = config or default_settings
        self.state = AuditState.IDLE
        self.last_result: Optional[AnalysisResult] = None
        self.selection: Dict[str, str] = {"x": "", "y": "", "mode": "single"}
        self._history: Optional[List[AnalysisResult]] = None
        self._last_hash: Optional[str] = None
        self._run_lock = threading.Lock()
        self._history_lock = threading.RLock()
        self._inflight_lock = threading.Lock()
        self._inflight: Optional[Tuple[AuditKey, Future]] = None

    # ---------------- History ----------------
    def history(self) -> List[AnalysisResult]:
        with self._history_lock:
            if self._history is None:
                self._history = self._load_history()
            return list(self._history)

    def _load_history(self) -> List[AnalysisResult]:
        if self.persistence is None:
            return []
        try:
            records = self.persistence.get_all("audits")
        except Exception as exc:
            logger.warning("Could not load audit history: %s", exc)
            self.activity.log(f"Persistence failure (history): {exc}")
            return []
        out: List[AnalysisResult] = []
        for raw in records:
            try:
                out.append(AnalysisResult.from_dict(raw))
            except Exception:
                logger.exception("Skipping unreadable audit record")
        return out

    def clear_history(self, *, purge: bool = False) -> None:
        with self._history_lock:
            if purge and self.persistence is not None:
                for result in self.history():
                    try:
                        self.persistence.delete("audits", result.timestamp)
                    except Exception as exc:
                        logger.warning("Could not delete audit %s: %s", result.timestamp, exc)
            self._history = []
            self._last_hash = None
        self.activity.log("Audit history cleared.")

    # ---------------- Validation ----------------
    def _transition(self, state: AuditState) -> None:
        # The audit holding the run lock owns the state until it finishes.
        if self._run_lock.acquire(blocking=False):
            try:
                self.state = state
            finally:
                self._run_lock.release()

    def _block(self, reason: str, silent: bool) -> None:
        self._transition(AuditState.BLOCKED)
        err = ValidationError(reason)
        self.activity.log(f"Audit blocked: {err.message}.")
        if not silent:
            logger.info("Audit blocked: %s", reason)
        raise err

    def validate(self, x: str, y: str, mode: str = "single", *, silent: bool = False) -> List[Row]:
        self._transition(AuditState.VALIDATING)
        if len(self.store) == 0:
            self._block("no_dataset", silent)
        if not x:
            self._block("missing_x", silent)
        if not y:
            self._block("missing_y", silent)
        rows = self.store.select_working_set(mode)
        if not rows:
            self._block("empty_working_set", silent)
        return rows

    # ---------------- Execution ----------------
    def trigger_audit(self, x: str, y: str, mode: str = "single", *, silent: bool = False) -> Optional[AnalysisResult]:
        """Validate, compute and record one audit.

        Raises ``ValidationError`` when the trigger is blocked. A trigger for the
        same rows and mapping as the audit already in flight receives that
        audit's result. With ``silent`` the call returns ``None`` instead of
        waiting behind another audit.
        """
        if silent and self._run_lock.locked():
            logger.debug("Refresh skipped, audit already in flight")
            return None
        rows = self.validate(x, y, mode, silent=silent)
        self.selection = {"x": x, "y": y, "mode": mode}
        key: AuditKey = (content_hash(rows), x, y, mode)

        with self._inflight_lock:
            inflight = self._inflight
        if inflight is not None and inflight[0] == key and not silent:
            self.activity.log("Audit joined in-flight cycle.")
            return inflight[1].result()

        if not self._run_lock.acquire(blocking=not silent):
            return None
        future: Future = Future()
        with self._inflight_lock:
            self._inflight = (key, future)
        try:
            result = self._execute(x, y, mode, rows)
            future.set_result(result)
            return result
        except BaseException as exc:
            future.set_exception(exc)
            raise
        finally:
            with self._inflight_lock:
                if self._inflight is not None and self._inflight[1] is future:
                    self._inflight = None
            self._run_lock.release()

    def _execute(self, x: str, y: str, mode: str, rows: List[Row]) -> AnalysisResult:
        self.state = AuditState.COMPUTING
        self.activity.log(f"Audit cycle initiated: MAP_{x}_{y}")
        history = self.history()
        payload = AuditPayload(
            x=x,
            y=y,
            rows=rows,
            mode=mode,
            numeric_columns=tuple(self.store.numeric_columns(mode)),
            history=tuple(history[: self.config.history_window]),
            last_hash=self._last_hash,
            thresholds=self.config.thresholds,
        )
        result = self._compute(payload)
        self._finish(result)
        return result

    def _compute(self, payload: AuditPayload) -> AnalysisResult:
        try:
            future = self.computation.run_async(payload)
            return first_of(future, self.config.worker_timeout_s)
        except ComputationTimeout as exc:
            logger.warning("Worker timeout, falling back to in-process computation")
            self.activity.log(f"Computation failure: {exc.message}; running in-process.")
        except Exception as exc:
            logger.warning("Background computation failed, falling back: %s", exc)
            self.activity.log(f"Computation failure: {exc}; running in-process.")
        return run_audit_logic(payload)

    def _finish(self, result: AnalysisResult) -> None:
        self._last_hash = result.content_hash
        if self.persistence is not None:
            try:
                self.persistence.put("audits", result.to_dict())
            except Exception as exc:
                logger.warning("Could not persist audit %s: %s", result.track_id, exc)
                self.activity.log(f"Persistence failure (audit): {exc}")
        with self._history_lock:
            if self._history is None:
                self._history = self._load_history()
            if not self._history or self._history[0].timestamp != result.timestamp:
                self._history.insert(0, result)
        self.last_result = result
        self.state = AuditState.RENDERED
        self.activity.log(f"Intelligence cycle synchronized: {result.track_id}")

    def refresh(self) -> Optional[AnalysisResult]:
        """Silent re-run for the live pulse; never raises."""
        x, y, mode = self.selection["x"], self.selection["y"], self.selection["mode"]
        if not (x and y) or len(self.store) == 0:
            return None
        try:
            result = self.trigger_audit(x, y, mode, silent=True)
        except Exception as exc:
            logger.error("Silent refresh failed: %s", exc)
            self.activity.log(f"Silent refresh error: {exc}")
            return None
        if result is not None:
            self.activity.log("Silent pulse: integrity cycle sync complete.")
        return result


class LiveRefresh:
    """Calls ``target`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, target: Callable[[], object], interval: Optional[float] = None) -> None:
        self.target = target
        self.interval = interval if interval is not None else default_settings.refresh_interval_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name="bi-live-refresh", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.target()
            except Exception:
                logger.exception("Live refresh tick failed")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
