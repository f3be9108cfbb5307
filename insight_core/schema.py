from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from insight_core.coerce import is_blank, parse_number
from insight_core.ingest import RawRow
from insight_core.settings import InferenceSettings, get_settings


class Role(str, Enum):
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    TEMPORAL = "temporal"
    LATITUDE = "latitude"
    LONGITUDE = "longitude"
    IDENTIFIER = "identifier"
    UNKNOWN = "unknown"


# Canonical fields in declaration order; ties between fields resolve in this order.
CANONICAL_FIELDS: Tuple[str, ...] = (
    "name",
    "spend",
    "payments",
    "invoice_count",
    "payment_type",
    "has_purchase_order",
    "date",
    "latitude",
    "longitude",
    "city",
    "region",
)

NUMERIC_FIELDS: Tuple[str, ...] = ("spend", "payments", "invoice_count")
CATEGORY_FIELDS: Tuple[str, ...] = ("name", "payment_type", "region", "city")
FLAG_FIELDS: Tuple[str, ...] = ("has_purchase_order",)
TEMPORAL_FIELD = "date"
COORDINATE_FIELDS: Tuple[str, ...] = ("latitude", "longitude")

SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "name": ("vendor", "vendorname", "name", "supplier", "suppliername"),
    "spend": ("spend", "totalspend", "sales", "amount", "total_spend"),
    "payments": ("payments", "totalpayments", "paid"),
    "invoice_count": ("invoicecount", "invoices", "invoice_count", "invoice"),
    "payment_type": ("paymenttype", "payment_method", "payment"),
    "has_purchase_order": ("haspo", "po", "purchaseorder", "has_purchase_order"),
    "date": ("date", "invoicedate", "invoice_date"),
    "latitude": ("lat", "latitude", "y"),
    "longitude": ("lon", "lng", "longitude", "x"),
    "city": ("city", "town"),
    "region": ("region", "country", "area"),
}

FALLBACK_PATTERNS: Dict[str, re.Pattern] = {
    "name": re.compile(r"name|vendor|supplier", re.IGNORECASE),
    "latitude": re.compile(r"lat|latitude", re.IGNORECASE),
    "longitude": re.compile(r"lon|lng|longitude", re.IGNORECASE),
}

DATE_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"^\d{4}-\d{1,2}-\d{1,2}([T\s]\d{1,2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?)?$"),
    re.compile(r"^\d{4}/\d{1,2}/\d{1,2}$"),
    re.compile(r"^\d{1,2}/\d{1,2}/(\d{2}|\d{4})$"),
    re.compile(r"^\d{1,2}[.\-]\d{1,2}[.\-]\d{4}$"),
)

_ID_HEADER = re.compile(r"^(id|uuid|key)$|[\s_\-](id|key)$", re.IGNORECASE)
_CAMEL_ID_HEADER = re.compile(r"[a-z]I[Dd]$")
_COORDINATE_LIMITS = {"latitude": 90.0, "longitude": 180.0}


class SchemaMappingError(ValueError):
    """Raised when manual mapping overrides reference unknown fields or headers."""

    def __init__(self, message: str, errors: Sequence[str]) -> None:
        super().__init__(message)
        self.errors = tuple(errors)


def normalize_header(header: object) -> str:
    """Trim, lower-case and strip whitespace / punctuation from a header."""
    return "".join(ch for ch in str(header).strip().lower() if ch.isalnum())


_NORMALIZED_SYNONYMS: Dict[str, frozenset] = {
    canonical: frozenset(normalize_header(s) for s in synonyms) for canonical, synonyms in SYNONYMS.items()
}


def looks_like_date(value: object) -> bool:
    if not isinstance(value, str):
        return False
    text = value.strip()
    return any(p.match(text) for p in DATE_PATTERNS)


@dataclass(frozen=True)
class ColumnProfile:
    name: str
    role: Role
    confidence: float
    non_empty: int = 0
    sampled: int = 0


@dataclass(frozen=True)
class FieldMapping:
    columns: Dict[str, str] = field(default_factory=dict)
    strategies: Dict[str, str] = field(default_factory=dict)

    def get(self, canonical: str) -> Optional[str]:
        return self.columns.get(canonical)

    def is_mapped(self, canonical: str) -> bool:
        return canonical in self.columns

    @property
    def numeric_fields(self) -> List[str]:
        return [f for f in NUMERIC_FIELDS if f in self.columns]

    @property
    def category_fields(self) -> List[str]:
        return [f for f in CATEGORY_FIELDS if f in self.columns]

    @property
    def has_date(self) -> bool:
        return TEMPORAL_FIELD in self.columns

    @property
    def has_coordinates(self) -> bool:
        return all(f in self.columns for f in COORDINATE_FIELDS)

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {canonical: self.columns.get(canonical) for canonical in CANONICAL_FIELDS}


@dataclass(frozen=True)
class SchemaInference:
    profiles: Tuple[ColumnProfile, ...]
    mapping: FieldMapping

    def profile(self, column: str) -> Optional[ColumnProfile]:
        for p in self.profiles:
            if p.name == column:
                return p
        return None


def _columns_of(rows: Sequence[RawRow]) -> List[str]:
    seen: Dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)


def resolve_mapping(headers: Sequence[str], overrides: Optional[Mapping[str, str]] = None) -> FieldMapping:
    """Map canonical fields onto source headers: overrides, then synonyms, then regex fallbacks."""
    lookup: Dict[str, str] = {}
    for header in headers:
        key = normalize_header(header)
        if key and key not in lookup:
            lookup[key] = header

    resolved: Dict[str, str] = {}
    strategies: Dict[str, str] = {}
    errors: List[str] = []

    for canonical, source in (overrides or {}).items():
        canonical = canonical.strip()
        if canonical not in CANONICAL_FIELDS:
            errors.append(f"unknown canonical field '{canonical}'")
            continue
        matched = lookup.get(normalize_header(source))
        if matched is None:
            errors.append(f"column '{source}' for '{canonical}' not found in headers")
            continue
        resolved[canonical] = matched
        strategies[canonical] = "override"
    if errors:
        raise SchemaMappingError("Invalid mapping overrides: " + "; ".join(errors), errors)

    used = set(resolved.values())
    for canonical in CANONICAL_FIELDS:
        if canonical in resolved:
            continue
        synonyms = _NORMALIZED_SYNONYMS[canonical]
        for header in headers:
            if header in used:
                continue
            if normalize_header(header) in synonyms:
                resolved[canonical] = header
                strategies[canonical] = "synonym"
                used.add(header)
                break

    for canonical, pattern in FALLBACK_PATTERNS.items():
        if canonical in resolved:
            continue
        for header in headers:
            if header not in used and pattern.search(header):
                resolved[canonical] = header
                strategies[canonical] = "pattern"
                used.add(header)
                break

    ordered = {c: resolved[c] for c in CANONICAL_FIELDS if c in resolved}
    return FieldMapping(columns=ordered, strategies={c: strategies[c] for c in ordered})


def _profile_column(
    column: str,
    values: Sequence[object],
    settings: InferenceSettings,
    canonical: Optional[str],
) -> ColumnProfile:
    present = [v for v in values if not is_blank(v)]
    non_empty = len(present)
    if non_empty == 0:
        return ColumnProfile(name=column, role=Role.UNKNOWN, confidence=0.0, non_empty=0, sampled=len(values))

    numbers = [n for n in (parse_number(v) for v in present) if n is not None]
    numeric_ratio = len(numbers) / non_empty
    date_ratio = sum(1 for v in present if looks_like_date(v)) / non_empty

    is_id_header = _ID_HEADER.search(column.strip()) or _CAMEL_ID_HEADER.search(column.strip())
    if is_id_header and len({str(v).strip() for v in present}) == non_empty:
        return ColumnProfile(column, Role.IDENTIFIER, 1.0, non_empty, len(values))

    if numeric_ratio >= settings.numeric_threshold:
        limit = _COORDINATE_LIMITS.get(canonical or "")
        if limit is not None and all(abs(n) <= limit for n in numbers):
            return ColumnProfile(column, Role(canonical), round(numeric_ratio, 4), non_empty, len(values))
        return ColumnProfile(column, Role.NUMERIC, round(numeric_ratio, 4), non_empty, len(values))
    if date_ratio >= settings.temporal_threshold:
        return ColumnProfile(column, Role.TEMPORAL, round(date_ratio, 4), non_empty, len(values))

    text_ratio = sum(1 for v in present if parse_number(v) is None and not looks_like_date(v)) / non_empty
    return ColumnProfile(column, Role.CATEGORICAL, round(text_ratio, 4), non_empty, len(values))


def infer(
    rows: Sequence[RawRow],
    columns: Optional[Sequence[str]] = None,
    *,
    sample_size: Optional[int] = None,
    overrides: Optional[Mapping[str, str]] = None,
    settings: Optional[InferenceSettings] = None,
) -> SchemaInference:
    settings = settings or get_settings().inference
    headers = list(columns) if columns is not None else _columns_of(rows)
    mapping = resolve_mapping(headers, overrides)
    canonical_by_header = {source: canonical for canonical, source in mapping.columns.items()}

    limit = settings.clamp_sample(sample_size)
    sample = rows[:limit]
    profiles = tuple(
        _profile_column(h, [row.get(h) for row in sample], settings, canonical_by_header.get(h))
        for h in headers
    )
    return SchemaInference(profiles=profiles, mapping=mapping)
