from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from insight_core.normalize import UNKNOWN, Record, records_to_frame
from insight_core.schema import CATEGORY_FIELDS, NUMERIC_FIELDS, FieldMapping
from insight_core.settings import ChartSettings, get_settings


AUTO = "auto"


class ChartType(str, Enum):
    BAR = "bar"
    PIE = "pie"
    LINE = "line"
    SCATTER = "scatter"
    BUBBLE = "bubble"
    HISTOGRAM = "histogram"
    HEATMAP = "heatmap"
    TREEMAP = "treemap"
    TABLE = "table"


CATEGORY_CHARTS = (ChartType.BAR, ChartType.PIE, ChartType.TREEMAP)
POINT_CHARTS = (ChartType.SCATTER, ChartType.BUBBLE)


class AggregationErrorKind(str, Enum):
    INSUFFICIENT_FIELDS = "insufficient_fields"
    EMPTY_RECORD_SET = "empty_record_set"


@dataclass(frozen=True)
class AggregationError:
    kind: AggregationErrorKind
    detail: str
    chart_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind.value, "detail": self.detail, "chart_type": self.chart_type}


@dataclass(frozen=True)
class ChartSpec:
    type: ChartType
    category: Optional[str] = None
    value: Optional[str] = None
    x: Optional[str] = None
    y: Optional[str] = None
    size: Optional[str] = None
    fields: Tuple[str, ...] = ()
    top_n: int = 10
    auto: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["type"] = self.type.value
        out["fields"] = list(self.fields)
        return out


@dataclass(frozen=True)
class ScatterPoint:
    record_id: int
    label: str
    x: float
    y: float
    r: Optional[float] = None


@dataclass(frozen=True)
class AggregationResult:
    spec: ChartSpec
    labels: Tuple[str, ...] = ()
    values: Tuple[float, ...] = ()
    edges: Tuple[float, ...] = ()
    points: Tuple[ScatterPoint, ...] = ()
    matrix: Tuple[Tuple[float, ...], ...] = ()
    fields: Tuple[str, ...] = ()
    record_ids: Tuple[int, ...] = ()
    total_records: int = 0
    truncated: bool = False

    def pairs(self) -> List[Tuple[str, float]]:
        return list(zip(self.labels, self.values))

    def to_frame(self) -> pd.DataFrame:
        t = self.spec.type
        if t in POINT_CHARTS:
            return pd.DataFrame([asdict(p) for p in self.points], columns=["record_id", "label", "x", "y", "r"])
        if t == ChartType.HEATMAP:
            frame = pd.DataFrame(list(self.matrix), columns=list(self.fields))
            frame.insert(0, "field", list(self.fields))
            return frame
        if t == ChartType.TABLE:
            return pd.DataFrame({"record_id": list(self.record_ids)})
        return pd.DataFrame({"label": list(self.labels), "value": list(self.values)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spec": self.spec.to_dict(),
            "labels": list(self.labels),
            "values": list(self.values),
            "edges": list(self.edges),
            "points": [asdict(p) for p in self.points],
            "matrix": [list(row) for row in self.matrix],
            "fields": list(self.fields),
            "record_ids": list(self.record_ids),
            "total_records": self.total_records,
            "truncated": self.truncated,
        }


def category_label(record: Record, category: str) -> str:
    """Grouping key of a record for a category chart; blanks bucket as UNKNOWN."""
    return record.text(category) or UNKNOWN


def _insufficient(chart_type: ChartType, detail: str) -> AggregationError:
    return AggregationError(AggregationErrorKind.INSUFFICIENT_FIELDS, detail, chart_type.value)


def _missing_fields(spec: ChartSpec) -> Optional[str]:
    t = spec.type
    if t in (ChartType.BAR, ChartType.TREEMAP):
        if not spec.category or not spec.value:
            return f"{t.value} chart needs a category field and a numeric field."
    elif t == ChartType.PIE:
        if not spec.category:
            return "pie chart needs a category field."
    elif t == ChartType.LINE:
        if not spec.value:
            return "line chart needs a date field and a numeric field."
    elif t == ChartType.HISTOGRAM:
        if not spec.value:
            return "histogram needs a numeric field."
    elif t == ChartType.SCATTER:
        if not spec.x or not spec.y or spec.x == spec.y:
            return "scatter chart needs two distinct numeric fields."
    elif t == ChartType.BUBBLE:
        if not spec.x or not spec.y or not spec.size:
            return "bubble chart needs at least one numeric field."
    elif t == ChartType.HEATMAP:
        if len(set(spec.fields)) < 2:
            return "heatmap needs at least two numeric fields."
    return None


def _check_explicit(
    chart_type: ChartType,
    mapping: FieldMapping,
    category: Optional[str],
    numeric_roles: Dict[str, Optional[str]],
) -> Optional[AggregationError]:
    if category is not None and (category not in CATEGORY_FIELDS or not mapping.is_mapped(category)):
        return _insufficient(chart_type, f"'{category}' is not a mapped category field.")
    for role, fld in numeric_roles.items():
        if fld is not None and (fld not in NUMERIC_FIELDS or not mapping.is_mapped(fld)):
            return _insufficient(chart_type, f"{role} field '{fld}' is not a mapped numeric field.")
    return None


def select_chart(
    mapping: FieldMapping,
    requested: Union[str, ChartType] = AUTO,
    *,
    top_n: Optional[int] = None,
    category: Optional[str] = None,
    value: Optional[str] = None,
    x: Optional[str] = None,
    y: Optional[str] = None,
    size: Optional[str] = None,
    settings: Optional[ChartSettings] = None,
) -> Union[ChartSpec, AggregationError]:
    """Pick the chart archetype and the fields it uses.

    "auto" walks the priority list bubble > bar > line > pie > table. Explicit
    requests fill unspecified roles with the first mapped fields; a missing
    requirement comes back as an AggregationError, never an exception.
    Unknown chart type names raise ValueError.
    """
    settings = settings or get_settings().charts
    top_n = settings.clamp_top_n(top_n)
    numeric = mapping.numeric_fields
    cats = mapping.category_fields

    if requested == AUTO or requested is None:
        if len(numeric) >= settings.bubble_min_numeric:
            return ChartSpec(ChartType.BUBBLE, x=numeric[0], y=numeric[1], size=numeric[2], top_n=top_n, auto=True)
        if len(cats) >= settings.bar_min_category and len(numeric) >= settings.bar_min_numeric:
            return ChartSpec(ChartType.BAR, category=cats[0], value=numeric[0], top_n=top_n, auto=True)
        if mapping.has_date and numeric:
            return ChartSpec(ChartType.LINE, value=numeric[0], top_n=top_n, auto=True)
        if cats:
            return ChartSpec(ChartType.PIE, category=cats[0], top_n=top_n, auto=True)
        return ChartSpec(ChartType.TABLE, top_n=top_n, auto=True)

    chart_type = ChartType(requested)
    error = _check_explicit(chart_type, mapping, category, {"value": value, "x": x, "y": y, "size": size})
    if error is not None:
        return error

    first_cat = category or (cats[0] if cats else None)
    first_num = value or (numeric[0] if numeric else None)

    if chart_type in (ChartType.BAR, ChartType.TREEMAP):
        spec = ChartSpec(chart_type, category=first_cat, value=first_num, top_n=top_n)
    elif chart_type == ChartType.PIE:
        spec = ChartSpec(chart_type, category=first_cat, top_n=top_n)
    elif chart_type == ChartType.LINE:
        if not mapping.has_date:
            return _insufficient(chart_type, "line chart needs a mapped date field.")
        spec = ChartSpec(chart_type, value=first_num, top_n=top_n)
    elif chart_type == ChartType.HISTOGRAM:
        spec = ChartSpec(chart_type, value=first_num, top_n=top_n)
    elif chart_type == ChartType.SCATTER:
        px = x or (numeric[0] if numeric else None)
        py = y or next((f for f in numeric if f != px), None)
        spec = ChartSpec(chart_type, x=px, y=py, top_n=top_n)
    elif chart_type == ChartType.BUBBLE:
        # fewer than three numeric fields: reuse what is there
        px = x or (numeric[0] if numeric else None)
        rest = [f for f in numeric if f != px]
        py = y or (rest[0] if rest else px)
        rest = [f for f in rest if f != py]
        psize = size or (rest[0] if rest else py)
        spec = ChartSpec(chart_type, x=px, y=py, size=psize, top_n=top_n)
    elif chart_type == ChartType.HEATMAP:
        spec = ChartSpec(chart_type, fields=tuple(numeric), top_n=top_n)
    else:
        spec = ChartSpec(ChartType.TABLE, top_n=top_n)

    missing = _missing_fields(spec)
    if missing:
        return _insufficient(chart_type, missing)
    return spec


# ---------------- Aggregations ----------------
def _category_series(records: Sequence[Record], spec: ChartSpec, *, count: bool) -> AggregationResult:
    df = records_to_frame(records)
    df["_bucket"] = [category_label(r, spec.category) for r in records]
    grouped = df.groupby("_bucket", sort=False)
    series = grouped.size().astype(float) if count else grouped[spec.value].sum().astype(float)
    # stable: equal values keep first-encountered order
    series = series.sort_values(ascending=False, kind="stable")
    truncated = len(series) > spec.top_n
    series = series.head(spec.top_n)
    return AggregationResult(
        spec=spec,
        labels=tuple(str(k) for k in series.index),
        values=tuple(float(v) for v in series.values),
        total_records=len(records),
        truncated=truncated,
    )


def _monthly_series(records: Sequence[Record], spec: ChartSpec) -> AggregationResult:
    df = records_to_frame(records).dropna(subset=["month"])
    series = df.groupby("month", sort=True)[spec.value].sum().astype(float) if not df.empty else pd.Series(dtype=float)
    return AggregationResult(
        spec=spec,
        labels=tuple(str(k) for k in series.index),
        values=tuple(float(v) for v in series.values),
        total_records=len(records),
    )


def bubble_radii(sizes: Sequence[float], settings: ChartSettings) -> List[float]:
    """Linear scale of size / max(size) into [radius_min, radius_max]; non-positive sizes get radius_min."""
    arr = np.clip(np.asarray(sizes, dtype=float), 0.0, None)
    peak = float(arr.max()) if arr.size else 0.0
    if peak <= 0:
        return [settings.radius_min] * int(arr.size)
    radii = settings.radius_min + (settings.radius_max - settings.radius_min) * (arr / peak)
    return [float(r) for r in np.clip(radii, settings.radius_min, settings.radius_max)]


def _point_series(records: Sequence[Record], spec: ChartSpec, settings: ChartSettings) -> AggregationResult:
    # first N in record order, not a random sample
    sample = list(records[: settings.point_cap])
    radii: List[Optional[float]] = [None] * len(sample)
    if spec.type == ChartType.BUBBLE:
        radii = list(bubble_radii([r.value(spec.size) for r in sample], settings))
    points = tuple(
        ScatterPoint(record_id=r.id, label=r.name, x=r.value(spec.x), y=r.value(spec.y), r=radius)
        for r, radius in zip(sample, radii)
    )
    return AggregationResult(
        spec=spec,
        points=points,
        total_records=len(records),
        truncated=len(records) > len(sample),
    )


def _edge_text(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return f"{value:.4f}".rstrip("0").rstrip(".")


def _bin_label(lo: float, hi: float, last: bool) -> str:
    closing = "]" if last else ")"
    return f"[{_edge_text(lo)}, {_edge_text(hi)}{closing}"


def _histogram(records: Sequence[Record], spec: ChartSpec, settings: ChartSettings) -> AggregationResult:
    values = np.array([r.value(spec.value) for r in records], dtype=float)
    lo, hi = float(values.min()), float(values.max())
    if lo == hi:
        counts = np.array([len(values)])
        edges = np.array([lo, hi])
    else:
        # numpy bins are [a, b) except the last, which includes max
        counts, edges = np.histogram(values, bins=settings.histogram_bins, range=(lo, hi))
    n = len(counts)
    labels = tuple(_bin_label(float(edges[i]), float(edges[i + 1]), i == n - 1) for i in range(n))
    return AggregationResult(
        spec=spec,
        labels=labels,
        values=tuple(float(c) for c in counts),
        edges=tuple(float(e) for e in edges),
        total_records=len(records),
    )


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson r over paired finite values; 0.0 when either side is constant."""
    xa = np.asarray(x, dtype=float)
    ya = np.asarray(y, dtype=float)
    mask = np.isfinite(xa) & np.isfinite(ya)
    xa, ya = xa[mask], ya[mask]
    if xa.size < 2 or np.ptp(xa) == 0 or np.ptp(ya) == 0:
        return 0.0
    dx = xa - xa.mean()
    dy = ya - ya.mean()
    denom = float(np.sqrt((dx * dx).sum() * (dy * dy).sum()))
    if denom == 0:
        return 0.0
    r = float((dx * dy).sum()) / denom
    return max(-1.0, min(1.0, r))


def correlation_matrix(records: Sequence[Record], fields: Sequence[str]) -> List[List[float]]:
    columns = {f: np.array([r.value(f) for r in records], dtype=float) for f in fields}
    matrix: List[List[float]] = []
    for fi in fields:
        row = []
        for fj in fields:
            if fi == fj:
                col = columns[fi][np.isfinite(columns[fi])]
                row.append(1.0 if col.size >= 2 and np.ptp(col) > 0 else 0.0)
            else:
                row.append(pearson(columns[fi], columns[fj]))
        matrix.append(row)
    return matrix


def _heatmap(records: Sequence[Record], spec: ChartSpec) -> AggregationResult:
    matrix = correlation_matrix(records, spec.fields)
    return AggregationResult(
        spec=spec,
        matrix=tuple(tuple(row) for row in matrix),
        fields=tuple(spec.fields),
        total_records=len(records),
    )


def aggregate(
    records: Sequence[Record],
    spec: ChartSpec,
    settings: Optional[ChartSettings] = None,
) -> Union[AggregationResult, AggregationError]:
    """Compute the payload a renderer needs for `spec` from the filtered records."""
    settings = settings or get_settings().charts
    missing = _missing_fields(spec)
    if missing:
        return _insufficient(spec.type, missing)

    if spec.type == ChartType.TABLE:
        return AggregationResult(spec=spec, record_ids=tuple(r.id for r in records), total_records=len(records))
    if not records:
        return AggregationError(
            AggregationErrorKind.EMPTY_RECORD_SET,
            "No records match the current filters.",
            spec.type.value,
        )

    if spec.type in (ChartType.BAR, ChartType.TREEMAP):
        return _category_series(records, spec, count=False)
    if spec.type == ChartType.PIE:
        return _category_series(records, spec, count=True)
    if spec.type == ChartType.LINE:
        return _monthly_series(records, spec)
    if spec.type in POINT_CHARTS:
        return _point_series(records, spec, settings)
    if spec.type == ChartType.HISTOGRAM:
        return _histogram(records, spec, settings)
    return _heatmap(records, spec)
