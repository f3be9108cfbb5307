from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from insight_core.coerce import display_text, is_blank, month_bucket, parse_bool, parse_date, parse_number
from insight_core.ingest import RawRow
from insight_core.schema import FLAG_FIELDS, NUMERIC_FIELDS, TEMPORAL_FIELD, FieldMapping


UNKNOWN = "Unknown"

# Category fields fall back to UNKNOWN.
CATEGORICAL_DEFAULTS: Dict[str, str] = {
    "payment_type": UNKNOWN,
    "region": UNKNOWN,
    "city": UNKNOWN,
}


@dataclass(frozen=True)
class Record:
    id: int
    name: str
    numeric: Dict[str, float] = field(default_factory=dict)
    categorical: Dict[str, str] = field(default_factory=dict)
    flags: Dict[str, bool] = field(default_factory=dict)
    date: Optional[datetime] = None
    coordinates: Optional[Tuple[float, float]] = None
    raw: RawRow = field(default_factory=dict, compare=False)

    def value(self, canonical: str) -> float:
        return self.numeric.get(canonical, 0.0)

    def text(self, canonical: str) -> str:
        """Coerced string value of a categorical, name or flag field."""
        if canonical == "name":
            return self.name
        if canonical in self.flags:
            return "true" if self.flags[canonical] else "false"
        return self.categorical.get(canonical, "")

    def display_strings(self) -> List[str]:
        out = [self.name, *self.categorical.values()]
        out.extend(display_text(v) for v in self.raw.values())
        return out


def _cell(row: RawRow, mapping: FieldMapping, canonical: str) -> object:
    source = mapping.get(canonical)
    if source is None:
        return None
    return row.get(source)


def _category(value: object, default: str) -> str:
    text = display_text(value)
    return text if text else default


def normalize_row(index: int, row: RawRow, mapping: FieldMapping) -> Record:
    numeric = {}
    for canonical in NUMERIC_FIELDS:
        parsed = parse_number(_cell(row, mapping, canonical))
        numeric[canonical] = parsed if parsed is not None else 0.0

    categorical = {
        canonical: _category(_cell(row, mapping, canonical), default)
        for canonical, default in CATEGORICAL_DEFAULTS.items()
    }
    flags = {canonical: parse_bool(_cell(row, mapping, canonical)) for canonical in FLAG_FIELDS}

    lat = parse_number(_cell(row, mapping, "latitude"))
    lon = parse_number(_cell(row, mapping, "longitude"))
    coordinates = (lat, lon) if lat is not None and lon is not None else None

    return Record(
        id=index,
        name=_category(_cell(row, mapping, "name"), UNKNOWN),
        numeric=numeric,
        categorical=categorical,
        flags=flags,
        date=parse_date(_cell(row, mapping, TEMPORAL_FIELD)),
        coordinates=coordinates,
        raw=dict(row),
    )


def normalize(rows: Sequence[RawRow], mapping: FieldMapping) -> List[Record]:
    """Coerce raw rows into records; ids are arrival indexes."""
    return [normalize_row(index, row, mapping) for index, row in enumerate(rows)]


def count_blank(rows: Sequence[RawRow], column: str) -> int:
    return sum(1 for row in rows if is_blank(row.get(column)))


FRAME_COLUMNS: List[str] = [
    "id",
    "name",
    *CATEGORICAL_DEFAULTS.keys(),
    *NUMERIC_FIELDS,
    *FLAG_FIELDS,
    "date",
    "month",
    "latitude",
    "longitude",
]


def records_to_frame(records: Sequence[Record]) -> pd.DataFrame:
    rows = []
    for r in records:
        lat, lon = r.coordinates if r.coordinates is not None else (None, None)
        rows.append(
            {
                "id": r.id,
                "name": r.name,
                **r.categorical,
                **r.numeric,
                **r.flags,
                "date": r.date,
                "month": month_bucket(r.date),
                "latitude": lat,
                "longitude": lon,
            }
        )
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)
