from __future__ import annotations

import io
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TYPE_CHECKING, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from bi_core.config import Settings, settings as default_settings
from bi_core.errors import DecodeError, DependencyMissing
from bi_core.models import Dataset, DatasetMeta, Row, Schema
from bi_core.statistics import NON_NUMERIC_CHARS, content_hash

if TYPE_CHECKING:
    from bi_core.activity import ActivityLog
    from bi_core.store import CollectionStore


logger = logging.getLogger(__name__)

Source = Union[str, Path, bytes, IO[bytes]]

SPREADSHEET_EXTENSIONS = {".xlsx", ".xlsm", ".xls"}
DELIMITERS = {".csv": ",", ".tsv": "\t", ".tab": "\t"}


def new_dataset_id() -> str:
    return "ds_" + uuid.uuid4().hex[:9]


def drop_duplicate_columns(df: pd.DataFrame) -> pd.DataFrame:
    return df.loc[:, ~df.columns.duplicated()]


def _source_name(source: Source, name: Optional[str]) -> str:
    if name:
        return name
    if isinstance(source, (str, Path)):
        return Path(source).name
    return getattr(source, "name", None) or "upload.csv"


def _source_size(source: Source) -> Optional[int]:
    if isinstance(source, (str, Path)):
        try:
            return os.path.getsize(source)
        except OSError:
            return None
    if isinstance(source, (bytes, bytearray)):
        return len(source)
    try:
        pos = source.tell()
        source.seek(0, io.SEEK_END)
        size = source.tell()
        source.seek(pos)
        return size
    except Exception:
        return None


def decode_file(source: Source, name: str) -> pd.DataFrame:
    """Decode a spreadsheet (first sheet only) or delimited text file into a string frame."""
    ext = Path(name).suffix.lower()
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    try:
        if ext in SPREADSHEET_EXTENSIONS:
            df = pd.read_excel(source, sheet_name=0, dtype=str)
        else:
            sep = DELIMITERS.get(ext)
            df = pd.read_csv(
                source,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                sep=sep,
                engine=None if sep else "python",
            )
    except ImportError as exc:
        raise DependencyMissing(f"Decoder for {name} is not installed: {exc}", {"file": name}) from exc
    except Exception as exc:
        raise DecodeError(f"Could not decode {name}: {exc}", {"file": name}) from exc
    return df.fillna("")


def normalize_rows(data: Union[pd.DataFrame, Sequence[dict]]) -> Tuple[List[Row], List[str]]:
    df = data.copy() if isinstance(data, pd.DataFrame) else pd.DataFrame.from_records(list(data))
    if df.empty:
        return [], [str(c).strip() for c in df.columns]
    df.columns = [str(c).strip() for c in df.columns]
    df = drop_duplicate_columns(df)
    df = df.astype(object).where(df.notna(), "")
    df = df.apply(lambda s: s.astype(str).str.strip())
    rows = [r for r in df.to_dict(orient="records") if any(v != "" for v in r.values())]
    return rows, list(df.columns)


def _is_numeric_sample(values: List[str]) -> bool:
    if not values:
        return False
    # The whole remnant must parse, so ISO dates ("2024-01-05") stay out of the numeric set.
    remnants = pd.Series(values, dtype="string").str.replace(NON_NUMERIC_CHARS, "", regex=True)
    parsed = pd.to_numeric(remnants, errors="coerce")
    blanks = pd.Series(values, dtype="string").str.strip().eq("")
    return bool(parsed.notna().all() and not blanks.any())


def _is_temporal_sample(values: List[str]) -> bool:
    if not values or any(len(str(v)) <= 5 for v in values):
        return False
    parsed = pd.to_datetime(pd.Series(values, dtype=object), errors="coerce", format="mixed")
    return bool(parsed.notna().all())


def discover_schema(rows: Sequence[Row], headers: Sequence[str], sample_size: int = 10) -> Schema:
    sample = list(rows[:sample_size])
    numerical: List[str] = []
    categorical: List[str] = []
    temporal: List[str] = []
    for h in headers:
        values = [str(r.get(h, "")) for r in sample]
        if _is_numeric_sample(values):
            numerical.append(h)
        elif _is_temporal_sample(values):
            temporal.append(h)
        else:
            categorical.append(h)
    return Schema(numerical=tuple(numerical), categorical=tuple(categorical), temporal=tuple(temporal))


def build_dataset(
    data: Union[pd.DataFrame, Sequence[dict]],
    name: str,
    *,
    dataset_id: Optional[str] = None,
    size_bytes: Optional[int] = None,
    source_type: str = "csv",
    config: Optional[Settings] = None,
) -> Optional[Dataset]:
    config = config or default_settings
    rows, headers = normalize_rows(data)
    if not rows:
        logger.warning("Dataset [%s] rejected: no rows after normalization", name)
        return None
    schema = discover_schema(rows, headers, sample_size=config.schema_sample_rows)
    if not schema.is_admissible():
        logger.warning("Dataset [%s] rejected due to insufficient coordinate validity: %s", name, schema.to_dict())
        return None
    return Dataset(
        id=dataset_id or new_dataset_id(),
        name=name,
        rows=rows,
        headers=headers,
        schema=schema,
        content_hash=content_hash(rows),
        meta=DatasetMeta(
            row_count=len(rows),
            ingested_at=datetime.now(timezone.utc).isoformat(),
            size_bytes=size_bytes,
            source_type=source_type,
        ),
    )


def parse_file(
    source: Source,
    name: Optional[str] = None,
    *,
    dataset_id: Optional[str] = None,
    config: Optional[Settings] = None,
) -> Optional[Dataset]:
    name = _source_name(source, name)
    size = _source_size(source)
    df = decode_file(source, name)
    ext = Path(name).suffix.lower().lstrip(".") or "csv"
    return build_dataset(df, name, dataset_id=dataset_id, size_bytes=size, source_type=ext, config=config)


@dataclass
class IngestReport:
    accepted: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    failed: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"accepted": list(self.accepted), "rejected": list(self.rejected), "failed": list(self.failed)}


def ingest_files(
    sources: Iterable[Union[Source, Tuple[str, Source]]],
    store: "CollectionStore",
    activity: Optional["ActivityLog"] = None,
    *,
    config: Optional[Settings] = None,
) -> IngestReport:
    """Parse every source into ``store``. A failing file is skipped; the rest of the batch continues."""
    items = list(sources)
    report = IngestReport()
    if activity is not None:
        activity.log(f"Ingress triggered: {len(items)} sources identified.")
    for item in items:
        name, source = item if isinstance(item, tuple) else (None, item)
        label = _source_name(source, name)
        try:
            dataset = parse_file(source, name=label, config=config)
        except (DecodeError, DependencyMissing) as exc:
            logger.error("Ingestion of %s failed: %s", label, exc.message)
            report.failed.append({"file": label, **exc.to_dict()})
            if activity is not None:
                activity.log(f"Critical error: {exc.message}")
            continue
        if dataset is None:
            report.rejected.append(label)
            if activity is not None:
                activity.log(f"Dataset [{label}] rejected due to insufficient coordinate validity.")
            continue
        store.add(dataset)
        report.accepted.append(dataset.id)
    if activity is not None:
        activity.log("Ingress complete: collection synchronized.")
    return report
