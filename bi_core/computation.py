from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import FIRST_COMPLETED, Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Set

from bi_core.audit import AuditPayload, run_audit_logic
from bi_core.errors import ComputationFailure
from bi_core.models import AnalysisResult


logger = logging.getLogger(__name__)

AuditFn = Callable[[AuditPayload], AnalysisResult]


class ComputationTimeout(ComputationFailure):
    pass


class Computation(ABC):
    """Runs audit logic somewhere and hands back a future."""

    @abstractmethod
    def run_async(self, payload: AuditPayload) -> Future: ...

    def cancel(self) -> None:
        pass

    def shutdown(self) -> None:
        pass


class InProcessComputation(Computation):
    def __init__(self, fn: AuditFn = run_audit_logic) -> None:
        self.fn = fn

    def run_async(self, payload: AuditPayload) -> Future:
        future: Future = Future()
        try:
            future.set_result(self.fn(payload))
        except Exception as exc:
            future.set_exception(exc)
        return future


class PoolComputation(Computation):
    """Background computation on a single-worker thread or process pool."""

    def __init__(self, kind: str = "thread", fn: AuditFn = run_audit_logic, max_workers: int = 1) -> None:
        if kind not in {"thread", "process"}:
            raise ValueError(f"Unknown pool kind {kind!r}")
        self.kind = kind
        self.fn = fn
        self.max_workers = max_workers
        self.unavailable = False
        self._executor: Optional[Executor] = None
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def _get_executor(self) -> Executor:
        if self._executor is None:
            try:
                if self.kind == "process":
                    self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
                else:
                    self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="bi-audit")
            except Exception as exc:
                self.unavailable = True
                raise ComputationFailure(f"Worker initialisation failed: {exc}") from exc
        return self._executor

    def run_async(self, payload: AuditPayload) -> Future:
        if self.unavailable:
            raise ComputationFailure("Background worker unavailable")
        with self._lock:
            try:
                future = self._get_executor().submit(self.fn, payload)
            except ComputationFailure:
                raise
            except Exception as exc:
                self.unavailable = True
                raise ComputationFailure(f"Worker rejected the audit: {exc}") from exc
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def cancel(self) -> None:
        with self._lock:
            pending = list(self._pending)
        for f in pending:
            f.cancel()

    def shutdown(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)


def first_of(future: Future, timeout: float) -> Any:
    """Race ``future`` against a timer. The loser is not cancelled."""
    done, _ = wait([future], timeout=timeout, return_when=FIRST_COMPLETED)
    if future not in done:
        raise ComputationTimeout(f"Background computation exceeded {timeout:g}s", {"timeout_s": timeout})
    return future.result()


def make_computation(kind: str) -> Computation:
    if kind == "inline":
        return InProcessComputation()
    return PoolComputation(kind=kind)
