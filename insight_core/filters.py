from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from insight_core.coerce import parse_date, parse_number
from insight_core.normalize import Record
from insight_core.schema import CATEGORY_FIELDS, FLAG_FIELDS, NUMERIC_FIELDS, TEMPORAL_FIELD


SEARCH_KEY = "search"
EQUALS_FIELDS = frozenset(CATEGORY_FIELDS) | frozenset(FLAG_FIELDS)
RANGE_FIELDS = frozenset(NUMERIC_FIELDS) | {TEMPORAL_FIELD}

Bound = Union[float, datetime, None]


@dataclass(frozen=True)
class Equals:
    field: str
    value: str

    def __post_init__(self) -> None:
        if self.field not in EQUALS_FIELDS:
            raise ValueError(f"Equals filter needs a categorical field, got '{self.field}'.")
        if isinstance(self.value, bool):
            object.__setattr__(self, "value", "true" if self.value else "false")
        elif not isinstance(self.value, str):
            raise ValueError("Equals filter value must be a string.")

    @property
    def key(self) -> str:
        return self.field

    def matches(self, record: Record) -> bool:
        return record.text(self.field) == self.value


@dataclass(frozen=True)
class Range:
    field: str
    min: Bound = None
    max: Bound = None

    def __post_init__(self) -> None:
        if self.field not in RANGE_FIELDS:
            raise ValueError(f"Range filter needs a numeric or date field, got '{self.field}'.")
        for bound in (self.min, self.max):
            if bound is None:
                continue
            if self.field == TEMPORAL_FIELD:
                if not isinstance(bound, datetime):
                    raise ValueError("Date range bounds must be datetimes.")
            elif isinstance(bound, bool) or not isinstance(bound, (int, float)):
                raise ValueError(f"Range bounds on '{self.field}' must be numbers.")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"Range filter on '{self.field}' has min > max.")

    @property
    def key(self) -> str:
        return self.field

    @property
    def is_noop(self) -> bool:
        return self.min is None and self.max is None

    def matches(self, record: Record) -> bool:
        if self.is_noop:
            return True
        if self.field == TEMPORAL_FIELD:
            value = record.date
            if value is None:
                return False
        else:
            value = record.value(self.field)
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


@dataclass(frozen=True)
class TextContains:
    term: str

    @property
    def key(self) -> str:
        return SEARCH_KEY

    def matches(self, record: Record) -> bool:
        needle = self.term.strip().lower()
        if not needle:
            return True
        return any(needle in text.lower() for text in record.display_strings())


FilterPredicate = Union[Equals, Range, TextContains]


@dataclass(frozen=True)
class FilterSet:
    """Active predicates keyed by field; at most one per field."""

    predicates: Dict[str, FilterPredicate] = field(default_factory=dict)

    def with_filter(self, key: str, predicate: Optional[FilterPredicate]) -> "FilterSet":
        updated = dict(self.predicates)
        if predicate is None:
            updated.pop(key, None)
        else:
            if predicate.key != key:
                raise ValueError(f"Predicate for '{predicate.key}' cannot be stored under '{key}'.")
            # last write wins
            updated[key] = predicate
        return FilterSet(predicates=updated)

    def __iter__(self) -> Iterator[FilterPredicate]:
        return iter(self.predicates.values())

    def __len__(self) -> int:
        return len(self.predicates)

    def get(self, key: str) -> Optional[FilterPredicate]:
        return self.predicates.get(key)

    def describe(self) -> List[Dict[str, object]]:
        out: List[Dict[str, object]] = []
        for key, pred in self.predicates.items():
            if isinstance(pred, Equals):
                out.append({"field": key, "op": "equals", "value": pred.value})
            elif isinstance(pred, Range):
                out.append({"field": key, "op": "range", "min": pred.min, "max": pred.max})
            else:
                out.append({"field": key, "op": "contains", "value": pred.term})
        return out


def apply_filters(
    records: Sequence[Record],
    filters: Union[FilterSet, Mapping[str, FilterPredicate], Iterable[FilterPredicate], None],
) -> List[Record]:
    """Keep records satisfying every predicate. Records are shared, never copied."""
    if filters is None:
        return list(records)
    if isinstance(filters, Mapping):
        predicates = list(filters.values())
    else:
        predicates = list(filters)
    if not predicates:
        return list(records)
    return [r for r in records if all(p.matches(r) for p in predicates)]


def _as_bound(value: object, *, temporal: bool) -> Bound:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if temporal:
        return parse_date(value)
    return parse_number(value)


def normalize_filters(raw: Optional[dict]) -> FilterSet:
    """Build a FilterSet from a JSON payload.

    Shape: {"equals": {field: value}, "ranges": {field: {"min": .., "max": ..}}, "search": "text"}.
    Blank values are skipped.
    """
    raw = raw or {}
    filters = FilterSet()

    for fld, value in (raw.get("equals") or {}).items():
        if value is None or (isinstance(value, str) and value == ""):
            continue
        filters = filters.with_filter(fld, Equals(fld, value if isinstance(value, bool) else str(value)))

    for fld, bounds in (raw.get("ranges") or {}).items():
        bounds = bounds or {}
        temporal = fld == TEMPORAL_FIELD
        low = _as_bound(bounds.get("min"), temporal=temporal)
        up = _as_bound(bounds.get("max"), temporal=temporal)
        if low is None and up is None:
            continue
        filters = filters.with_filter(fld, Range(fld, low, up))

    term = (raw.get("search") or "").strip()
    if term:
        filters = filters.with_filter(SEARCH_KEY, TextContains(term))
    return filters
