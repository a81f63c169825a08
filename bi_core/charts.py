from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import altair as alt
import pandas as pd

from bi_core.models import AnalysisResult, Row
from bi_core.statistics import coerce_series, column_as_series

alt.data_transformers.disable_max_rows()


def to_vega_spec(chart: alt.TopLevelMixin) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def distribution_chart(result: AnalysisResult, top_n: int = 15) -> Optional[alt.Chart]:
    if not result.categorical_aggregation:
        return None
    df = pd.DataFrame(list(result.categorical_aggregation[:top_n]), columns=["category", "value"])
    return (
        alt.Chart(df)
        .mark_bar(color="#2563eb")
        .encode(
            x=alt.X("value:Q", title=result.label_y, axis=alt.Axis(format="~s")),
            y=alt.Y("category:N", title=result.label_x, sort="-x"),
            tooltip=["category", alt.Tooltip("value:Q", format=",.2f")],
        )
        .properties(height=max(160, 22 * len(df)), title=f"{result.label_y} by {result.label_x}")
    )


def metric_histogram(result: AnalysisResult, rows: Sequence[Row]) -> Optional[alt.Chart]:
    if not rows:
        return None
    df = pd.DataFrame.from_records(list(rows))
    values = pd.DataFrame({"value": coerce_series(column_as_series(df, result.chosen_y))})
    return (
        alt.Chart(values)
        .mark_bar(color="#16a34a")
        .encode(
            x=alt.X("value:Q", bin=alt.Bin(maxbins=30), title=result.label_y),
            y=alt.Y("count():Q", title="Records"),
        )
        .properties(height=220, title=f"{result.label_y} distribution")
    )


class ChartRenderer:
    """Builds the dashboard charts for a result and keeps a snapshot for export."""

    def __init__(self, top_n: int = 15) -> None:
        self.top_n = top_n
        self._snapshot: Optional[Dict[str, Any]] = None
        self.specs: Dict[str, Dict[str, Any]] = {}

    def render(self, result: AnalysisResult, rows: Sequence[Row]) -> Dict[str, Dict[str, Any]]:
        specs: Dict[str, Dict[str, Any]] = {}
        dist = distribution_chart(result, self.top_n)
        if dist is not None:
            specs["distribution"] = to_vega_spec(dist)
        hist = metric_histogram(result, rows)
        if hist is not None:
            specs["histogram"] = to_vega_spec(hist)
        self.specs = specs
        self._snapshot = specs.get("distribution") or specs.get("histogram")
        return specs

    def get_chart_snapshot(self) -> Optional[Dict[str, Any]]:
        return self._snapshot

    def reset(self) -> None:
        self.specs = {}
        self._snapshot = None
