"""Descriptive statistics over a working row set.

Numeric coercion is deliberately lenient: every character other than digits,
``.`` and ``-`` is stripped and the leading float is parsed. Cells that still
do not parse become ``0`` and are counted. A text cell therefore raises
``count`` without moving ``sum``. Downstream dashboards already depend on
these numbers, so the quirk is kept as is.
"""

from __future__ import annotations

import json
import math
import re
import zlib
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from bi_core.models import StatisticsRecord


Rows = Union[pd.DataFrame, Sequence[Mapping[str, object]]]

NON_NUMERIC_CHARS = r"[^0-9.\-]"
LEADING_FLOAT = r"^(-?(?:\d+\.?\d*|\.\d+))"
_LEADING_FLOAT_RE = re.compile(LEADING_FLOAT)
_NON_NUMERIC_RE = re.compile(NON_NUMERIC_CHARS)


def as_frame(rows: Rows) -> pd.DataFrame:
    if isinstance(rows, pd.DataFrame):
        return rows
    return pd.DataFrame.from_records(list(rows))


def column_as_series(df: pd.DataFrame, col: str) -> pd.Series:
    if col not in df.columns:
        return pd.Series([""] * len(df), index=df.index, dtype=object)
    val = df[col]
    if isinstance(val, pd.DataFrame):
        return val.iloc[:, 0]
    return val


def coerce_numeric(value: object) -> float:
    if isinstance(value, (int, float, np.number)) and not isinstance(value, (bool, np.bool_)):
        return float(value)
    text = _NON_NUMERIC_RE.sub("", "" if value is None else str(value))
    match = _LEADING_FLOAT_RE.match(text)
    return float(match.group(1)) if match else 0.0


def coerce_series(series: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series):
        return series.astype(float)
    text = series.astype("string").fillna("").str.replace(NON_NUMERIC_CHARS, "", regex=True)
    parsed = pd.to_numeric(text.str.extract(LEADING_FLOAT, expand=False), errors="coerce")
    return parsed.fillna(0.0).astype(float)


def compute_column_statistics(rows: Rows, column: str) -> Optional[StatisticsRecord]:
    df = as_frame(rows)
    values = coerce_series(column_as_series(df, column)).dropna()
    count = int(len(values))
    if count == 0:
        return None
    arr = values.to_numpy(dtype=float)
    total = float(arr.sum())
    mean = total / count
    variance = float(((arr - mean) ** 2).sum() / count)
    lo = float(arr.min())
    hi = float(arr.max())
    return StatisticsRecord(
        count=count,
        sum=total,
        mean=mean,
        median=float(np.median(arr)),
        variance=variance,
        std_dev=math.sqrt(variance),
        min=lo,
        max=hi,
        range=hi - lo,
    )


def statistics_model(rows: Rows, columns: Iterable[str]) -> Dict[str, StatisticsRecord]:
    df = as_frame(rows)
    out: Dict[str, StatisticsRecord] = {}
    for col in columns:
        stats = compute_column_statistics(df, col)
        if stats is not None:
            out[col] = stats
    return out


def correlation(rows: Rows, col_x: str, col_y: str) -> float:
    df = as_frame(rows)
    n = len(df)
    if n < 2:
        return 0.0
    x = coerce_series(column_as_series(df, col_x)).to_numpy(dtype=float)
    y = coerce_series(column_as_series(df, col_y)).to_numpy(dtype=float)
    sum_x, sum_y = float(x.sum()), float(y.sum())
    sum_xy = float((x * y).sum())
    sum_x2, sum_y2 = float((x * x).sum()), float((y * y).sum())
    spread_x = n * sum_x2 - sum_x * sum_x
    spread_y = n * sum_y2 - sum_y * sum_y
    # Rounding can leave a constant column with a tiny non-zero spread.
    if spread_x <= 1e-12 * max(1.0, n * sum_x2) or spread_y <= 1e-12 * max(1.0, n * sum_y2):
        return 0.0
    denominator = math.sqrt(spread_x * spread_y)
    if denominator == 0 or not math.isfinite(denominator):
        return 0.0
    r = (n * sum_xy - sum_x * sum_y) / denominator
    if not math.isfinite(r):
        return 0.0
    return max(-1.0, min(1.0, r))


def categorical_aggregation(rows: Rows, category_col: str, metric_col: str) -> List[Tuple[str, float]]:
    df = as_frame(rows)
    if df.empty:
        return []
    keys = column_as_series(df, category_col).astype("string").fillna("").str.strip()
    frame = pd.DataFrame({"key": keys, "value": coerce_series(column_as_series(df, metric_col))})
    frame = frame[frame["key"].ne("") & frame["key"].str.lower().ne("null")]
    if frame.empty:
        return []
    grouped = frame.groupby("key", sort=False)["value"].sum()
    grouped = grouped.sort_values(ascending=False, kind="stable")
    return [(str(k), float(v)) for k, v in grouped.items()]


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return sign + "".join(reversed(out))


def content_hash(rows: Rows) -> str:
    """Cheap change-detection fingerprint; collisions are tolerated."""
    records = rows.to_dict(orient="records") if isinstance(rows, pd.DataFrame) else [dict(r) for r in rows]
    text = json.dumps(records, separators=(",", ":"), ensure_ascii=False, default=str)
    return _base36(zlib.crc32(text.encode("utf-8")))
