from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class AuditRequest(BaseModel):
    x: str = ""
    y: str = ""
    mode: Literal["single", "union", "compare"] = "single"


class CoordinateCandidates(BaseModel):
    x: str = ""
    y: str = ""
    z: str = ""


class IngestResponse(BaseModel):
    accepted: List[str] = Field(default_factory=list)
    rejected: List[str] = Field(default_factory=list)
    failed: List[Dict[str, object]] = Field(default_factory=list)
    candidates: CoordinateCandidates = Field(default_factory=CoordinateCandidates)


class ErrorResponse(BaseModel):
    error: str
    type: str
    reason: Optional[str] = None
