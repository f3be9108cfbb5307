import pytest

from insight_core.aggregate import (
    AggregationError,
    AggregationErrorKind,
    AggregationResult,
    ChartSpec,
    ChartType,
    aggregate,
    bubble_radii,
    correlation_matrix,
    pearson,
    select_chart,
)
from insight_core.charts import build_chart, to_vega_spec
from insight_core.data import SAMPLE_CSV
from insight_core.ingest import ingest
from insight_core.normalize import normalize
from insight_core.schema import infer
from insight_core.settings import ChartSettings


def _load(text):
    sheet = ingest(text).select()
    mapping = infer(sheet.rows, sheet.columns).mapping
    return mapping, normalize(sheet.rows, mapping)


def test_auto_picks_bubble_with_three_numeric_fields():
    mapping, _ = _load(SAMPLE_CSV)
    spec = select_chart(mapping)

    assert spec.type == ChartType.BUBBLE
    assert (spec.x, spec.y, spec.size) == ("spend", "payments", "invoice_count")
    assert spec.auto is True


def test_auto_picks_bar_grouped_by_region_summing_spend():
    mapping, records = _load("region,spend\nEMEA,10\nAPAC,5\nEMEA,7\n")
    spec = select_chart(mapping, "auto")

    assert spec.type == ChartType.BAR
    assert (spec.category, spec.value) == ("region", "spend")
    result = aggregate(records, spec)
    assert result.pairs() == [("EMEA", 17.0), ("APAC", 5.0)]


def test_auto_line_pie_and_table_fallbacks():
    mapping, _ = _load("date,spend\n2024-01-01,1\n")
    assert select_chart(mapping).type == ChartType.LINE

    mapping, _ = _load("region,notes\nEMEA,x\n")
    assert select_chart(mapping).type == ChartType.PIE

    mapping, _ = _load("foo,bar\n1,2\n")
    assert select_chart(mapping).type == ChartType.TABLE


def test_bar_scenario_from_minimal_csv():
    mapping, records = _load("name,lat,lon,spend\nA,10,20,100\nB,,20,50\n")
    result = aggregate(records, select_chart(mapping))

    assert result.spec.type == ChartType.BAR
    assert list(result.labels) == ["A", "B"]
    assert list(result.values) == [100.0, 50.0]


def test_bar_sum_is_conserved_when_top_n_covers_every_category():
    mapping, records = _load(SAMPLE_CSV)
    spec = select_chart(mapping, "bar", category="region", top_n=10)
    result = aggregate(records, spec)

    assert result.pairs() == [("EMEA", 1310000.0), ("North America", 1250000.0), ("APAC", 1200000.0)]
    assert sum(result.values) == sum(r.value("spend") for r in records)
    assert result.truncated is False


def test_unknown_is_its_own_bucket():
    mapping, records = _load("region,spend\nEMEA,1\n,2\n,3\n")
    result = aggregate(records, select_chart(mapping, "bar"))
    assert result.pairs() == [("Unknown", 5.0), ("EMEA", 1.0)]


def test_pie_counts_with_stable_tie_order():
    mapping, records = _load(SAMPLE_CSV)
    result = aggregate(records, select_chart(mapping, "pie", category="payment_type"))

    assert result.pairs() == [("Credit", 2.0), ("Wire", 2.0), ("Card", 1.0)]


def test_top_n_has_minimum_of_five_and_truncates():
    rows = "\n".join(f"c{i},{i}" for i in range(1, 9))
    mapping, records = _load("region,spend\n" + rows + "\n")
    spec = select_chart(mapping, "bar", top_n=2)

    assert spec.top_n == 5
    result = aggregate(records, spec)
    assert list(result.labels) == ["c8", "c7", "c6", "c5", "c4"]
    assert result.truncated is True


def test_line_sums_per_month_in_order_and_skips_missing_dates():
    mapping, records = _load("date,spend\n2024-03-02,5\n2024-01-15,1\n2024-03-20,2\nnever,100\n")
    result = aggregate(records, select_chart(mapping, "line"))

    assert result.pairs() == [("2024-01", 1.0), ("2024-03", 7.0)]


def test_line_requires_a_date_field():
    mapping, _ = _load("region,spend\nEMEA,1\n")
    error = select_chart(mapping, "line")
    assert isinstance(error, AggregationError)
    assert error.kind == AggregationErrorKind.INSUFFICIENT_FIELDS


def test_scatter_needs_two_numeric_fields():
    mapping, _ = _load("region,spend\nEMEA,1\n")
    error = select_chart(mapping, "scatter")
    assert isinstance(error, AggregationError)
    assert error.kind == AggregationErrorKind.INSUFFICIENT_FIELDS
    assert error.to_dict()["error"] == "insufficient_fields"


def test_bubble_reuses_fields_when_fewer_than_three():
    mapping, records = _load("region,spend\nEMEA,1\nAPAC,4\n")
    spec = select_chart(mapping, "bubble")

    assert (spec.x, spec.y, spec.size) == ("spend", "spend", "spend")
    result = aggregate(records, spec)
    assert [p.r for p in result.points] == [11.5, 40.0]


def test_bubble_radii_are_clamped_and_floored():
    settings = ChartSettings()
    assert bubble_radii([0, 5, 10], settings) == [2.0, 21.0, 40.0]
    assert bubble_radii([-3, 0], settings) == [2.0, 2.0]


def test_points_are_capped_in_record_order():
    rows = "\n".join(f"v{i},{i},{i * 2}" for i in range(10))
    mapping, records = _load("name,spend,payments\n" + rows + "\n")
    result = aggregate(records, select_chart(mapping, "scatter"), ChartSettings(point_cap=4))

    assert [p.record_id for p in result.points] == [0, 1, 2, 3]
    assert result.truncated is True
    assert result.points[3].y == 6.0
    assert result.points[0].r is None


def test_histogram_bins_cover_every_record():
    mapping, records = _load(SAMPLE_CSV)
    result = aggregate(records, select_chart(mapping, "histogram"))

    assert len(result.labels) == 20
    assert sum(result.values) == 5
    assert result.labels[0].startswith("[330000, ")
    assert result.labels[-1].endswith("1250000]")
    assert result.values[-1] == 1.0


def test_histogram_of_constant_column_is_one_bin():
    mapping, records = _load("region,spend\nA,3\nB,3\n")
    result = aggregate(records, select_chart(mapping, "histogram"))
    assert result.pairs() == [("[3, 3]", 2.0)]


def test_heatmap_diagonal_and_bounds():
    mapping, records = _load(SAMPLE_CSV)
    result = aggregate(records, select_chart(mapping, "heatmap"))

    assert result.fields == ("spend", "payments", "invoice_count")
    for i, row in enumerate(result.matrix):
        assert row[i] == 1.0
        assert all(-1.0 <= v <= 1.0 for v in row)
    assert result.matrix[0][1] == pytest.approx(result.matrix[1][0])
    assert result.matrix[0][1] > 0.99


def test_pearson_is_zero_for_constant_columns():
    assert pearson([1, 1, 1], [1, 2, 3]) == 0.0
    assert pearson([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)
    assert correlation_matrix([], ["spend"]) == [[0.0]]


def test_heatmap_with_one_numeric_field_is_insufficient():
    mapping, _ = _load("region,spend\nEMEA,1\n")
    error = select_chart(mapping, "heatmap")
    assert isinstance(error, AggregationError)
    assert error.kind == AggregationErrorKind.INSUFFICIENT_FIELDS


def test_empty_record_set_is_reported_except_for_tables():
    mapping, _ = _load(SAMPLE_CSV)
    error = aggregate([], select_chart(mapping, "bar"))
    assert isinstance(error, AggregationError)
    assert error.kind == AggregationErrorKind.EMPTY_RECORD_SET

    table = aggregate([], ChartSpec(ChartType.TABLE))
    assert isinstance(table, AggregationResult)
    assert table.record_ids == ()


def test_explicit_fields_must_be_mapped():
    mapping, _ = _load("region,spend\nEMEA,1\n")
    error = select_chart(mapping, "bar", value="payments")
    assert isinstance(error, AggregationError)


def test_unknown_chart_type_raises():
    mapping, _ = _load("region,spend\nEMEA,1\n")
    with pytest.raises(ValueError):
        select_chart(mapping, "sankey")


def test_vega_lite_spec_carries_highlight_selection():
    mapping, records = _load(SAMPLE_CSV)
    result = aggregate(records, select_chart(mapping, "bar", category="region"))
    spec = to_vega_spec(build_chart(result))

    mark = spec["mark"]
    assert (mark["type"] if isinstance(mark, dict) else mark) == "bar"
    assert any(p["name"] == "highlight" for p in spec["params"])
    assert to_vega_spec(build_chart(aggregate(records, ChartSpec(ChartType.TABLE)))) is None


def test_every_chart_type_builds_on_the_sample():
    mapping, records = _load(SAMPLE_CSV)
    for chart_type in ("bar", "pie", "line", "scatter", "bubble", "histogram", "heatmap"):
        result = aggregate(records, select_chart(mapping, chart_type))
        assert isinstance(result, AggregationResult), chart_type
        assert to_vega_spec(build_chart(result)) is not None
