from insight_core.aggregate import ChartSpec, ChartType, select_chart
from insight_core.data import SAMPLE_CSV
from insight_core.filters import Equals, apply_filters
from insight_core.highlight import ChartSelection, PointSelection, records_for
from insight_core.ingest import ingest
from insight_core.normalize import normalize
from insight_core.schema import infer


def _load():
    sheet = ingest(SAMPLE_CSV).select()
    mapping = infer(sheet.rows, sheet.columns).mapping
    return mapping, normalize(sheet.rows, mapping)


def test_pie_slice_resolves_against_filtered_records_only():
    mapping, records = _load()
    spec = select_chart(mapping, "pie", category="payment_type")

    assert records_for(ChartSelection(spec, "Wire"), records) == {1, 3}
    emea = apply_filters(records, [Equals("region", "EMEA")])
    assert records_for(ChartSelection(spec, "Wire"), emea) == {1}


def test_bar_label_uses_the_aggregation_bucket():
    mapping, records = _load()
    spec = select_chart(mapping, "bar", category="region")
    assert records_for(ChartSelection(spec, "APAC"), records) == {2, 3}


def test_unknown_bucket_matches_blank_categories():
    spec = ChartSpec(ChartType.BAR, category="region", value="spend")
    sheet = ingest("region,spend\n,1\nEMEA,2\n").select()
    records = normalize(sheet.rows, infer(sheet.rows, sheet.columns).mapping)
    assert records_for(ChartSelection(spec, "Unknown"), records) == {0}


def test_blank_city_bucket_matches_equals_filter():
    spec = ChartSpec(ChartType.BAR, category="city", value="spend")
    sheet = ingest("name,city,spend\nA,,10\nB,Paris,5\n").select()
    records = normalize(sheet.rows, infer(sheet.rows, sheet.columns).mapping)

    assert records_for(ChartSelection(spec, "Unknown"), records) == {0}
    assert [r.id for r in apply_filters(records, [Equals("city", "Unknown")])] == [0]


def test_line_point_resolves_month_bucket():
    mapping, records = _load()
    spec = select_chart(mapping, "line")
    assert records_for(ChartSelection(spec, "2024-03"), records) == {1}


def test_map_marker_selection():
    _, records = _load()
    assert records_for(PointSelection(2), records) == {2}
    assert records_for(PointSelection(2), records[:2]) == frozenset()


def test_empty_selection_clears_highlight():
    mapping, records = _load()
    spec = select_chart(mapping, "bar")

    assert records_for(None, records) == frozenset()
    assert records_for(ChartSelection(spec, None), records) == frozenset()
    assert records_for(PointSelection(None), records) == frozenset()


def test_charts_without_grouping_key_highlight_nothing():
    mapping, records = _load()
    for chart_type in ("histogram", "heatmap"):
        spec = select_chart(mapping, chart_type)
        assert records_for(ChartSelection(spec, "[330000, 376000)"), records) == frozenset()
