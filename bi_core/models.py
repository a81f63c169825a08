from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple


Row = Dict[str, str]

MODES = ("single", "union", "compare")


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class Schema:
    numerical: Tuple[str, ...] = ()
    categorical: Tuple[str, ...] = ()
    temporal: Tuple[str, ...] = ()

    def is_admissible(self) -> bool:
        return bool(self.numerical) and bool(self.categorical or self.temporal)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"numerical": list(self.numerical), "categorical": list(self.categorical), "temporal": list(self.temporal)}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Schema":
        return cls(
            numerical=tuple(raw.get("numerical") or ()),
            categorical=tuple(raw.get("categorical") or ()),
            temporal=tuple(raw.get("temporal") or ()),
        )


@dataclass(frozen=True)
class DatasetMeta:
    row_count: int
    ingested_at: str
    size_bytes: Optional[int] = None
    source_type: str = "csv"


@dataclass
class Dataset:
    id: str
    name: str
    rows: List[Row]
    headers: List[str]
    schema: Schema
    content_hash: str
    meta: DatasetMeta

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rows": [dict(r) for r in self.rows],
            "headers": list(self.headers),
            "schema": self.schema.to_dict(),
            "content_hash": self.content_hash,
            "meta": asdict(self.meta),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Dataset":
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name", "")),
            rows=[dict(r) for r in raw.get("rows") or []],
            headers=list(raw.get("headers") or []),
            schema=Schema.from_dict(raw.get("schema") or {}),
            content_hash=str(raw.get("content_hash", "")),
            meta=DatasetMeta(**(raw.get("meta") or {"row_count": 0, "ingested_at": ""})),
        )

    def manifest(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "headers": list(self.headers),
            "schema": self.schema.to_dict(),
            "content_hash": self.content_hash,
            "meta": asdict(self.meta),
        }


@dataclass(frozen=True)
class StatisticsRecord:
    count: int
    sum: float
    mean: float
    median: float
    variance: float
    std_dev: float
    min: float
    max: float
    range: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StatisticsRecord":
        return cls(**{k: raw[k] for k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class Deltas:
    volume_shift_pct: float = 0.0
    peak_shift_pct: float = 0.0


@dataclass(frozen=True)
class Interpretation:
    operational_state: str
    concentration_risk: str
    stability_assessment: str
    efficiency_observation: str
    variance_status: str
    concentration_pct: float


@dataclass(frozen=True)
class ImpactEntry:
    label: str
    severity: str
    detail: str
    trigger: str


@dataclass(frozen=True)
class AdvisoryEntry:
    action: str
    metric: str
    context: str


@dataclass(frozen=True)
class NarrativeSection:
    title: str
    content: str


@dataclass(frozen=True)
class DominantDriver:
    name: str
    value: float
    share_pct: float


@dataclass(frozen=True)
class Advisory:
    interpretation: Interpretation
    impact_matrix: Tuple[ImpactEntry, ...]
    advisory: Tuple[AdvisoryEntry, ...]


@dataclass(frozen=True)
class AnalysisResult:
    track_id: str
    timestamp: str
    content_hash: str
    is_delta: bool
    mode: str
    chosen_x: str
    chosen_y: str
    label_x: str
    label_y: str
    row_count: int
    statistics_by_column: Dict[str, StatisticsRecord]
    main_statistics: Optional[StatisticsRecord]
    correlation: float
    categorical_aggregation: Tuple[Tuple[str, float], ...]
    deltas: Deltas
    interpretation: Interpretation
    impact_matrix: Tuple[ImpactEntry, ...]
    advisory: Tuple[AdvisoryEntry, ...]
    narrative_sections: Tuple[NarrativeSection, ...]
    dominant_drivers: Tuple[DominantDriver, ...] = ()
    peaks: Dict[str, Any] = field(default_factory=dict)
    ranges: Dict[str, str] = field(default_factory=dict)

    @property
    def top_category(self) -> Optional[str]:
        return self.categorical_aggregation[0][0] if self.categorical_aggregation else None

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "AnalysisResult":
        main = raw.get("main_statistics")
        return cls(
            track_id=raw["track_id"],
            timestamp=raw["timestamp"],
            content_hash=raw.get("content_hash", ""),
            is_delta=bool(raw.get("is_delta", True)),
            mode=raw.get("mode", "single"),
            chosen_x=raw.get("chosen_x", ""),
            chosen_y=raw.get("chosen_y", ""),
            label_x=raw.get("label_x", ""),
            label_y=raw.get("label_y", ""),
            row_count=int(raw.get("row_count", 0)),
            statistics_by_column={
                k: StatisticsRecord.from_dict(v) for k, v in (raw.get("statistics_by_column") or {}).items()
            },
            main_statistics=StatisticsRecord.from_dict(main) if main else None,
            correlation=float(raw.get("correlation", 0.0)),
            categorical_aggregation=tuple((str(k), float(v)) for k, v in raw.get("categorical_aggregation") or ()),
            deltas=Deltas(**(raw.get("deltas") or {})),
            interpretation=Interpretation(**raw["interpretation"]),
            impact_matrix=tuple(ImpactEntry(**e) for e in raw.get("impact_matrix") or ()),
            advisory=tuple(AdvisoryEntry(**e) for e in raw.get("advisory") or ()),
            narrative_sections=tuple(NarrativeSection(**s) for s in raw.get("narrative_sections") or ()),
            dominant_drivers=tuple(DominantDriver(**d) for d in raw.get("dominant_drivers") or ()),
            peaks=dict(raw.get("peaks") or {}),
            ranges=dict(raw.get("ranges") or {}),
        )
