from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
import logging
import math
import os
from typing import List, Literal

import numpy as np
import pandas as pd
from fastapi import Depends, FastAPI, File, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from bi_api.schemas import AuditRequest, CoordinateCandidates, ErrorResponse, IngestResponse
from bi_core.config import settings
from bi_core.errors import ExportBlocked, ValidationError
from bi_core.session import Session


logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

session = Session()


def get_session() -> Session:
    return session


@asynccontextmanager
async def lifespan(_: FastAPI):
    s = get_session()
    s.hydrate()
    if os.getenv("BI_LIVE_REFRESH", "true").lower() == "true":
        s.start_live_refresh()
    try:
        yield
    finally:
        s.close()


app = FastAPI(title="BI Audit Dashboard API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:8501"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        ),
    )


def _server_error(name: str, exc: Exception) -> JSONResponse:
    logger.exception("%s failed", name)
    return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


@app.post("/datasets")
def upload_datasets(files: List[UploadFile] = File(...), s: Session = Depends(get_session)):
    try:
        sources = [(f.filename or "upload.csv", f.file.read()) for f in files]
        report = s.ingest(sources)
        candidates = CoordinateCandidates(**s.store.coordinate_candidates())
        return _json(IngestResponse(**report.to_dict(), candidates=candidates).model_dump())
    except Exception as exc:
        return _server_error("upload_datasets", exc)


@app.get("/datasets")
def list_datasets(s: Session = Depends(get_session)):
    try:
        return _json({"datasets": [ds.manifest() for ds in s.store.get_all().values()]})
    except Exception as exc:
        return _server_error("list_datasets", exc)


@app.delete("/datasets/{dataset_id}")
def delete_dataset(dataset_id: str, s: Session = Depends(get_session)):
    try:
        if not s.remove_dataset(dataset_id):
            return JSONResponse(status_code=404, content={"error": f"Unknown dataset {dataset_id}", "type": "NotFound"})
        return _json({"removed": dataset_id})
    except Exception as exc:
        return _server_error("delete_dataset", exc)


@app.delete("/datasets")
def clear_datasets(s: Session = Depends(get_session)):
    try:
        s.store.clear()
        s.renderer.reset()
        s.activity.log("Collection cleared.")
        return _json({"cleared": True})
    except Exception as exc:
        return _server_error("clear_datasets", exc)


@app.get("/collection")
def collection(mode: Literal["single", "union", "compare"] = Query(default="single"), s: Session = Depends(get_session)):
    try:
        return _json(asdict(s.store.reconcile(mode)))
    except Exception as exc:
        return _server_error("collection", exc)


@app.get("/coordinates")
def coordinates(s: Session = Depends(get_session)):
    try:
        return _json(s.store.coordinate_candidates())
    except Exception as exc:
        return _server_error("coordinates", exc)


@app.get("/summary")
def summary(s: Session = Depends(get_session)):
    try:
        return _json({"summary": s.store.org_summary(), "state": s.orchestrator.state.value})
    except Exception as exc:
        return _server_error("summary", exc)


@app.post("/audit", responses={422: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
def audit(request: AuditRequest, s: Session = Depends(get_session)):
    try:
        result = s.audit(request.x, request.y, request.mode)
        return _json({"result": result.to_dict(), "charts": s.charts})
    except ValidationError as exc:
        return JSONResponse(status_code=422, content=exc.to_dict())
    except Exception as exc:
        return _server_error("audit", exc)


@app.get("/history")
def history(limit: int = Query(default=20, ge=1, le=500), s: Session = Depends(get_session)):
    try:
        return _json({"history": [r.to_dict() for r in s.orchestrator.history()[:limit]]})
    except Exception as exc:
        return _server_error("history", exc)


@app.delete("/history")
def clear_history(purge: bool = Query(default=False), s: Session = Depends(get_session)):
    try:
        s.orchestrator.clear_history(purge=purge)
        return _json({"cleared": True, "purged": purge})
    except Exception as exc:
        return _server_error("clear_history", exc)


@app.get("/activity")
def activity(s: Session = Depends(get_session)):
    return _json({"activity": s.activity.to_records()})


@app.get("/export", response_class=HTMLResponse, responses={409: {"model": ErrorResponse}})
def export(s: Session = Depends(get_session)):
    try:
        return HTMLResponse(content=s.export())
    except ExportBlocked as exc:
        return JSONResponse(status_code=409, content=exc.to_dict())
    except Exception as exc:
        return _server_error("export", exc)
