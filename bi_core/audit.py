from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from bi_core.advisory import interpret
from bi_core.config import AdvisoryThresholds
from bi_core.errors import ComputationFailure
from bi_core.loader import discover_schema
from bi_core.models import (
    AnalysisResult,
    Deltas,
    DominantDriver,
    NarrativeSection,
    Row,
    StatisticsRecord,
)
from bi_core.statistics import (
    as_frame,
    categorical_aggregation,
    compute_column_statistics,
    content_hash,
    correlation,
    statistics_model,
)


@dataclass(frozen=True)
class AuditPayload:
    x: str
    y: str
    rows: Sequence[Row]
    mode: str = "single"
    numeric_columns: Tuple[str, ...] = ()
    history: Tuple[AnalysisResult, ...] = ()
    last_hash: Optional[str] = None
    thresholds: AdvisoryThresholds = field(default_factory=AdvisoryThresholds)


def clean_label(label: Optional[str]) -> str:
    if not label:
        return "N/A"
    cleaned = re.sub(r"[_-]", " ", label)
    cleaned = re.sub(r"([a-z])([A-Z])", r"\1 \2", cleaned)
    cleaned = re.sub(r"(Id|Key|Dataset|Value)$", "", cleaned, flags=re.IGNORECASE).strip()
    if not cleaned:
        return label
    return " ".join(w[:1].upper() + w[1:].lower() for w in cleaned.split(" "))


def compute_deltas(current: StatisticsRecord, history: Sequence[AnalysisResult]) -> Deltas:
    if not history or history[0].main_statistics is None:
        return Deltas()
    prev = history[0].main_statistics
    volume = (current.sum - prev.sum) / (prev.sum or 1) * 100
    peak = (current.max - prev.max) / (prev.max or 1) * 100
    return Deltas(volume_shift_pct=round(volume, 1), peak_shift_pct=round(peak, 1))


def correlation_strength(value: float, thresholds: AdvisoryThresholds) -> str:
    if abs(value) > thresholds.relational_lock_correlation:
        return "strong"
    if abs(value) > thresholds.moderate_correlation:
        return "moderate"
    return "weak"


def new_track_id() -> str:
    return "TRK_" + uuid.uuid4().hex[:5].upper()


def run_audit_logic(payload: AuditPayload) -> AnalysisResult:
    df = as_frame(payload.rows)
    current_hash = content_hash(payload.rows)

    numeric_columns = list(payload.numeric_columns)
    if not numeric_columns and not df.empty:
        numeric_columns = list(discover_schema(list(payload.rows), list(df.columns)).numerical)

    model = statistics_model(df, numeric_columns)
    main = model.get(payload.y) or compute_column_statistics(df, payload.y)
    if main is None:
        raise ComputationFailure(f"No values for metric {payload.y!r}", {"y": payload.y})

    corr = correlation(df, payload.x, payload.y)
    categorical = categorical_aggregation(df, payload.x, payload.y)
    deltas = compute_deltas(main, payload.history)

    label_x = clean_label(payload.x)
    label_y = clean_label(payload.y)
    top = categorical[0] if categorical else None
    dominant = top[0] if top else "N/A"

    advice = interpret(main, corr, deltas, label_x, label_y, top, thresholds=payload.thresholds)
    concentration = advice.interpretation.concentration_pct

    exec_summary = (
        f"Dataset identifies a {advice.interpretation.operational_state} state across {main.count:,} records. "
        f"Main contributor [{dominant}] accounts for {concentration:.1f}% of total {label_y}. "
        f"Operational variance is {'high' if main.std_dev > main.mean else 'stable'}, indicating a "
        f"{advice.interpretation.efficiency_observation.lower()} baseline."
    )
    relational = (
        f"A {correlation_strength(corr, payload.thresholds)} correlation ({corr:.2f}) exists "
        f"between {label_x} and {label_y}."
    )

    drivers: List[DominantDriver] = [
        DominantDriver(name=k, value=v, share_pct=round(v / (main.sum or 1) * 100, 1)) for k, v in categorical[:5]
    ]

    return AnalysisResult(
        track_id=new_track_id(),
        timestamp=datetime.now(timezone.utc).isoformat(),
        content_hash=current_hash,
        is_delta=current_hash != payload.last_hash,
        mode=payload.mode,
        chosen_x=payload.x,
        chosen_y=payload.y,
        label_x=label_x,
        label_y=label_y,
        row_count=len(df),
        statistics_by_column=model,
        main_statistics=main,
        correlation=corr,
        categorical_aggregation=tuple(categorical),
        deltas=deltas,
        interpretation=advice.interpretation,
        impact_matrix=advice.impact_matrix,
        advisory=advice.advisory,
        narrative_sections=(
            NarrativeSection(title="Executive Summary", content=exec_summary),
            NarrativeSection(title="Relational Analysis", content=relational),
        ),
        dominant_drivers=tuple(drivers),
        peaks={
            "point": dominant,
            "value": main.max,
            "intensity": f"{main.max / (main.mean or 1):.2f}x",
        },
        ranges={
            "operational": f"{main.min:,.2f} → {main.max:,.2f}",
            "stability": f"{main.mean - main.std_dev:.2f} → {main.mean + main.std_dev:.2f}",
        },
    )
