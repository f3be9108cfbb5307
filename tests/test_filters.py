from datetime import datetime

import pytest

from insight_core.data import SAMPLE_CSV
from insight_core.filters import Equals, FilterSet, Range, TextContains, apply_filters, normalize_filters
from insight_core.ingest import ingest
from insight_core.normalize import normalize
from insight_core.schema import infer


def _records():
    sheet = ingest(SAMPLE_CSV).select()
    return normalize(sheet.rows, infer(sheet.rows, sheet.columns).mapping)


def _names(records):
    return [r.name for r in records]


def test_equals_is_exact_and_case_sensitive():
    records = _records()

    assert _names(apply_filters(records, [Equals("region", "EMEA")])) == ["Global Components", "Nordic Supplies"]
    assert apply_filters(records, [Equals("region", "emea")]) == []


def test_equals_on_flag_field():
    records = _records()
    kept = apply_filters(records, [Equals("has_purchase_order", True)])
    assert _names(kept) == ["Acme Supplies", "Global Components", "Continental Traders"]


def test_range_bounds_are_inclusive_and_optional():
    records = _records()

    kept = apply_filters(records, [Range("spend", 420000, 980000)])
    assert _names(kept) == ["Global Components", "Asia Parts Co", "Continental Traders"]
    assert len(apply_filters(records, [Range("spend", min=900000)])) == 2
    assert len(apply_filters(records, [Range("invoice_count", max=28)])) == 2
    assert len(apply_filters(records, [Range("spend")])) == 5


def test_date_range():
    records = _records()
    kept = apply_filters(records, [Range("date", datetime(2024, 2, 1), datetime(2024, 3, 31))])
    assert _names(kept) == ["Acme Supplies", "Global Components"]


def test_text_contains_searches_every_display_string():
    records = _records()

    assert _names(apply_filters(records, [TextContains("stockholm")])) == ["Nordic Supplies"]
    assert len(apply_filters(records, [TextContains("SUPPLIES")])) == 2
    assert len(apply_filters(records, [TextContains("  ")])) == 5


def test_predicates_combine_with_and():
    records = _records()
    kept = apply_filters(records, [Equals("region", "APAC"), Equals("payment_type", "Wire")])
    assert _names(kept) == ["Continental Traders"]


def test_apply_filters_is_idempotent_and_shares_records():
    records = _records()
    filters = FilterSet().with_filter("region", Equals("region", "EMEA")).with_filter("spend", Range("spend", 0, 500000))

    once = apply_filters(records, filters)
    twice = apply_filters(once, filters)

    assert once == twice
    assert once[0] is records[4]


def test_malformed_predicates_are_rejected():
    with pytest.raises(ValueError):
        Range("spend", 10, 5)
    with pytest.raises(ValueError):
        Range("region", 0, 1)
    with pytest.raises(ValueError):
        Equals("spend", "1")
    with pytest.raises(ValueError):
        Equals("", "x")
    with pytest.raises(ValueError):
        Range("date", 1, 2)


def test_later_predicate_for_a_field_replaces_earlier_one():
    records = _records()
    filters = FilterSet().with_filter("spend", Range("spend", min=900000))
    filters = filters.with_filter("spend", Range("spend", max=400000))

    assert len(filters) == 1
    assert _names(apply_filters(records, filters)) == ["Nordic Supplies"]
    assert len(filters.with_filter("spend", None)) == 0


def test_with_filter_rejects_mismatched_key():
    with pytest.raises(ValueError):
        FilterSet().with_filter("region", Equals("city", "London"))


def test_normalize_filters_payload():
    filters = normalize_filters(
        {
            "equals": {"region": "EMEA", "city": ""},
            "ranges": {"spend": {"min": "$500,000", "max": None}, "payments": {"min": "", "max": ""}},
            "search": "  global ",
        }
    )

    assert filters.get("region") == Equals("region", "EMEA")
    assert filters.get("spend") == Range("spend", 500000.0, None)
    assert filters.get("payments") is None
    assert filters.get("city") is None
    assert filters.get("search") == TextContains("global")
    assert _names(apply_filters(_records(), filters)) == ["Global Components"]
