from __future__ import annotations

from typing import Any, Dict, Optional

import altair as alt
import pandas as pd

from insight_core.aggregate import AggregationResult, ChartType

alt.data_transformers.disable_max_rows()

HIGHLIGHT_PARAM = "highlight"
CHART_HEIGHT = 320


def to_vega_spec(chart: Optional[alt.TopLevelMixin]) -> Optional[Dict[str, Any]]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    if chart is None:
        return None
    return chart.to_dict()


def _title(result: AggregationResult) -> str:
    spec = result.spec
    if spec.type in (ChartType.BAR, ChartType.TREEMAP):
        return f"{spec.value} by {spec.category}"
    if spec.type == ChartType.PIE:
        return f"records by {spec.category}"
    if spec.type == ChartType.LINE:
        return f"{spec.value} per month"
    if spec.type == ChartType.HISTOGRAM:
        return f"{spec.value} distribution"
    if spec.type == ChartType.HEATMAP:
        return "correlation"
    return f"{spec.y} vs {spec.x}"


def _label_selection() -> alt.Parameter:
    return alt.selection_point(name=HIGHLIGHT_PARAM, fields=["label"])


def _bar(df: pd.DataFrame, result: AggregationResult) -> alt.Chart:
    sel = _label_selection()
    return (
        alt.Chart(df)
        .mark_bar()
        .encode(
            x=alt.X("label:N", title=result.spec.category, sort=None),
            y=alt.Y("value:Q", title=result.spec.value, axis=alt.Axis(format=",")),
            opacity=alt.condition(sel, alt.value(1.0), alt.value(0.4)),
            tooltip=["label", alt.Tooltip("value:Q", format=",.2f")],
        )
        .add_params(sel)
    )


def _pie(df: pd.DataFrame, result: AggregationResult) -> alt.Chart:
    sel = _label_selection()
    return (
        alt.Chart(df)
        .mark_arc()
        .encode(
            theta=alt.Theta("value:Q"),
            color=alt.Color("label:N", title=result.spec.category, sort=None),
            opacity=alt.condition(sel, alt.value(1.0), alt.value(0.4)),
            tooltip=["label", alt.Tooltip("value:Q", format=",")],
        )
        .add_params(sel)
    )


def _line(df: pd.DataFrame, result: AggregationResult) -> alt.Chart:
    sel = _label_selection()
    return (
        alt.Chart(df)
        .mark_line(point=True)
        .encode(
            x=alt.X("label:O", title="Month"),
            y=alt.Y("value:Q", title=result.spec.value, axis=alt.Axis(format=",")),
            tooltip=["label", alt.Tooltip("value:Q", format=",.2f")],
        )
        .add_params(sel)
    )


def _histogram(df: pd.DataFrame, result: AggregationResult) -> alt.Chart:
    return (
        alt.Chart(df)
        .mark_bar()
        .encode(
            x=alt.X("label:N", title=result.spec.value, sort=None),
            y=alt.Y("value:Q", title="Records"),
            tooltip=["label", alt.Tooltip("value:Q", format=",")],
        )
    )


def _points(df: pd.DataFrame, result: AggregationResult) -> alt.Chart:
    spec = result.spec
    sel = alt.selection_point(name=HIGHLIGHT_PARAM, fields=["record_id"])
    encoding: Dict[str, Any] = dict(
        x=alt.X("x:Q", title=spec.x),
        y=alt.Y("y:Q", title=spec.y),
        opacity=alt.condition(sel, alt.value(0.9), alt.value(0.3)),
        tooltip=["label", "record_id", alt.Tooltip("x:Q", format=",.2f"), alt.Tooltip("y:Q", format=",.2f")],
    )
    if spec.type == ChartType.BUBBLE:
        # radii are already scaled; draw area = r^2
        df = df.assign(area=df["r"] ** 2)
        encoding["size"] = alt.Size("area:Q", scale=None, legend=None)
    return alt.Chart(df).mark_circle().encode(**encoding).add_params(sel)


def _heatmap(result: AggregationResult) -> alt.Chart:
    frame = result.to_frame()
    long = (
        frame.rename(columns={"field": "field_x"})
        .melt(id_vars="field_x", var_name="field_y", value_name="r")
    )
    return (
        alt.Chart(long)
        .mark_rect()
        .encode(
            x=alt.X("field_x:N", title=None, sort=list(result.fields)),
            y=alt.Y("field_y:N", title=None, sort=list(result.fields)),
            color=alt.Color("r:Q", scale=alt.Scale(domain=[-1, 1], scheme="redblue")),
            tooltip=["field_x", "field_y", alt.Tooltip("r:Q", format=".2f")],
        )
    )


def build_chart(result: AggregationResult) -> Optional[alt.Chart]:
    """Altair chart for an aggregation result; None for table and treemap (rendered by the shell)."""
    t = result.spec.type
    if t in (ChartType.TABLE, ChartType.TREEMAP):
        return None
    if t == ChartType.HEATMAP:
        chart = _heatmap(result)
    else:
        df = result.to_frame()
        if t == ChartType.BAR:
            chart = _bar(df, result)
        elif t == ChartType.PIE:
            chart = _pie(df, result)
        elif t == ChartType.LINE:
            chart = _line(df, result)
        elif t == ChartType.HISTOGRAM:
            chart = _histogram(df, result)
        else:
            chart = _points(df, result)
    return chart.properties(title=_title(result), height=CHART_HEIGHT)
