from __future__ import annotations

import html
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from bi_core.errors import ExportBlocked
from bi_core.models import AnalysisResult


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportCompleteness:
    complete: bool
    missing: List[str] = field(default_factory=list)


def check_report_completeness(result: Optional[AnalysisResult], snapshot: Optional[Dict[str, Any]]) -> ReportCompleteness:
    if result is None:
        return ReportCompleteness(False, ["result"])
    checks = {
        "narrative": bool(result.narrative_sections),
        "statistics": bool(result.statistics_by_column) or result.main_statistics is not None,
        "chart": bool(snapshot),
        "impact": len(result.impact_matrix) > 0,
        "advisory": len(result.advisory) > 0,
    }
    missing = [k for k, ok in checks.items() if not ok]
    return ReportCompleteness(not missing, missing)


def verify_certification(result: Optional[AnalysisResult]) -> Dict[str, Any]:
    if result is None:
        return {"status": "INCOMPLETE", "certified": False, "reason": "No results generated."}
    checks = {
        "statistics_model": bool(result.statistics_by_column),
        "categorical": len(result.categorical_aggregation) > 0,
        "advisory": len(result.advisory) > 0,
        "track_id": bool(result.track_id),
    }
    failed = [k for k, ok in checks.items() if not ok]
    if not failed:
        return {"status": "COMPLETE | VERIFIED", "certified": True}
    return {"status": "PARTIAL | UNVERIFIED", "certified": False, "reason": f"Missing: {', '.join(failed)}"}


def format_number_columns(df: pd.DataFrame, cols: List[str], decimals: int = 2) -> pd.DataFrame:
    formatted = df.copy()
    for c in cols:
        if c in formatted.columns:
            formatted[c] = formatted[c].apply(lambda v: f"{float(v):,.{decimals}f}" if pd.notna(v) else "")
    return formatted


def statistics_table(result: AnalysisResult) -> pd.DataFrame:
    records = [{"column": col, **stats.to_dict()} for col, stats in result.statistics_by_column.items()]
    df = pd.DataFrame.from_records(records)
    if df.empty:
        return df
    return format_number_columns(df, ["sum", "mean", "median", "variance", "std_dev", "min", "max", "range"])


_TEMPLATE = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>{title}</title>
<script src="https://cdn.jsdelivr.net/npm/vega@5"></script>
<script src="https://cdn.jsdelivr.net/npm/vega-lite@5"></script>
<script src="https://cdn.jsdelivr.net/npm/vega-embed@6"></script>
<style>body{{font-family:sans-serif;margin:32px;color:#111827}} table{{border-collapse:collapse;margin:8px 0 24px}}
td,th{{border:1px solid #e5e7eb;padding:4px 8px;font-size:0.85rem}} h2{{border-bottom:1px solid #e5e7eb}}</style>
</head><body>
<h1>{title}</h1>
<p>Track ID: {track_id} &middot; Generated: {timestamp} &middot; Fingerprint: {content_hash} &middot; {certification}</p>
{sections}
<h2>Chart</h2><div id="chart"></div>
<h2>Statistics</h2>{stats}
<h2>Impact Matrix</h2>{impact}
<h2>Advisory</h2>{advisory}
<script>vegaEmbed("#chart", {spec}, {{"actions": false}});</script>
</body></html>
"""


def export_report(result: Optional[AnalysisResult], snapshot: Optional[Dict[str, Any]]) -> str:
    completeness = check_report_completeness(result, snapshot)
    if not completeness.complete:
        logger.warning("Export blocked, incomplete: %s", completeness.missing)
        raise ExportBlocked(completeness.missing)
    sections = "\n".join(
        f"<h2>{html.escape(s.title)}</h2><p>{html.escape(s.content)}</p>" for s in result.narrative_sections
    )
    impact = pd.DataFrame([asdict(e) for e in result.impact_matrix])
    advisory = pd.DataFrame([asdict(e) for e in result.advisory])
    cert = verify_certification(result)
    return _TEMPLATE.format(
        title=html.escape(f"Audit Report: {result.label_y} by {result.label_x}"),
        track_id=html.escape(result.track_id),
        timestamp=html.escape(result.timestamp),
        content_hash=html.escape(result.content_hash),
        certification=html.escape(cert["status"]),
        sections=sections,
        stats=statistics_table(result).to_html(index=False),
        impact=impact.to_html(index=False),
        advisory=advisory.to_html(index=False),
        spec=json.dumps(snapshot).replace("</", "<\\/"),
    )
