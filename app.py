import altair as alt
import pandas as pd
import streamlit as st
from contextlib import contextmanager
from typing import Dict, List, Optional

from insight_core.aggregate import AUTO, AggregationError, ChartType
from insight_core.charts import build_chart
from insight_core.dashboard import Dashboard
from insight_core.data import compute_data_quality
from insight_core.filters import Equals, Range, TextContains
from insight_core.highlight import ChartSelection, PointSelection
from insight_core.ingest import IngestError
from insight_core.metrics_map import map_markers, record_detail
from insight_core.metrics_overview import compute_overview

alt.data_transformers.disable_max_rows()
# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-header {display: flex;justify-content: space-between;align-items: center;margin-bottom: 8px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;}
        .card-actions {font-size: 0.9rem;color: #2563eb;}
        .chip-row {display: flex;flex-wrap: wrap;gap: 6px;margin-top: 6px;}
        .chip {background: #f3f4f6;border: 1px solid #e5e7eb;border-radius: 14px;padding: 4px 10px;font-size: 0.85rem;color: #374151;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str, actions: Optional[str] = None):
    container = st.container()
    container.markdown(
        f"""
        <div class="card">
          <div class="card-header">
            <div class="card-title">{title}</div>
            <div class="card-actions">{actions or ""}</div>
          </div>
        """,
        unsafe_allow_html=True,
    )
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def format_filter_summary(described: List[Dict[str, object]]) -> str:
    if not described:
        return "<span class='chip'>Filters: none</span>"
    chips = []
    for item in described:
        if item["op"] == "range":
            chips.append(f"{item['field']}: {item['min'] if item['min'] is not None else '…'} – {item['max'] if item['max'] is not None else '…'}")
        elif item["op"] == "contains":
            chips.append(f"search: {item['value']}")
        else:
            chips.append(f"{item['field']}: {item['value']}")
    return "".join([f"<span class='chip'>{txt}</span>" for txt in chips])


def get_dashboard() -> Dashboard:
    if "dashboard" not in st.session_state:
        st.session_state["dashboard"] = Dashboard()
    return st.session_state["dashboard"]


def render_kpi_tiles(overview: Dict[str, object]):
    kpis = overview["kpis"]
    cols = st.columns(5)
    cols[0].metric("Vendors", f"{kpis['total_vendors']:,}")
    cols[1].metric("Invoices", f"{kpis['total_invoices']:,}")
    cols[2].metric("Spend ($M)", f"{kpis['total_spend_m']:,.2f}")
    cols[3].metric("Payments ($M)", f"{kpis['total_payments_m']:,.2f}")
    cols[4].metric("With PO", f"{kpis['percent_with_po']}%")


# ---------- UI setup ----------
st.set_page_config(page_title="Data Intelligence Dashboard", layout="wide")
inject_base_styles()
st.title("Data Intelligence Dashboard")
st.caption("Upload any CSV, Excel or JSON file; columns are detected automatically.")

dash = get_dashboard()

# ----- Sidebar: data source + filters -----
with st.sidebar:
    st.markdown("### Data")
    upload = st.file_uploader("Upload dataset", type=["csv", "xlsx", "xls", "json"])
    if upload is not None and st.session_state.get("_loaded_upload") != upload.file_id:
        outcome = dash.load(upload.getvalue(), filename=upload.name)
        st.session_state["_loaded_upload"] = upload.file_id
        if isinstance(outcome, IngestError):
            st.error(f"Could not load {upload.name}: {outcome.kind.value} ({outcome.detail})")
    if st.button("Load Sample"):
        dash.load_sample()

    bundle = dash.bundle
    if bundle is not None and len(bundle.sheet_names) > 1:
        sheet = st.selectbox("Sheet", bundle.sheet_names, index=bundle.sheet_names.index(bundle.active_sheet))
        if sheet != bundle.active_sheet and upload is not None:
            outcome = dash.load(upload.getvalue(), filename=upload.name, sheets=[sheet])
            if isinstance(outcome, IngestError):
                st.error(f"Could not load sheet {sheet}: {outcome.kind.value}")

    bundle = dash.bundle
    if bundle is not None:
        st.markdown("---")
        st.markdown("### Filters")
        for fld in ("region", "payment_type"):
            if not bundle.mapping.is_mapped(fld):
                continue
            options = ["All"] + bundle.distinct_values(fld)
            choice = st.selectbox(fld.replace("_", " ").title(), options, key=f"filter_{fld}")
            dash.set_filter(fld, None if choice == "All" else Equals(fld, choice))
        if bundle.mapping.is_mapped("spend") and bundle.records:
            spends = [r.value("spend") for r in bundle.records]
            lo, hi = float(min(spends)), float(max(spends))
            if lo < hi:
                low, up = st.slider("Spend", min_value=lo, max_value=hi, value=(lo, hi))
                dash.set_filter("spend", None if (low, up) == (lo, hi) else Range("spend", low, up))
        query = st.text_input("Search", value="")
        dash.set_filter("search", TextContains(query) if query.strip() else None)

        st.markdown("---")
        st.markdown("### Chart")
        chart_options = [AUTO] + [t.value for t in ChartType]
        chart_type = st.selectbox("Chart type", chart_options, index=0)
        top_n = st.slider("Top N", min_value=5, max_value=50, value=10)

if dash.bundle is None:
    st.info("Upload a file or click **Load Sample** to begin.")
    st.stop()

bundle = dash.bundle
records = dash.filtered_records
st.markdown(f"<div class='chip-row'>{format_filter_summary(dash.filters.describe())}</div>", unsafe_allow_html=True)

with card("KPI Tiles", actions=f"{len(records):,} of {bundle.record_count:,} records"):
    overview = compute_overview(records, bundle.mapping)
    render_kpi_tiles(overview)

chart_col, map_col = st.columns([3, 2])
highlighted: frozenset = frozenset()
with chart_col:
    outcome = dash.visualize(chart_type, top_n=top_n)
    with card("Chart"):
        if isinstance(outcome, AggregationError):
            st.warning(f"Cannot render {outcome.chart_type}: {outcome.detail}")
        else:
            spec, result = outcome
            chart = build_chart(result)
            if chart is not None:
                st.altair_chart(chart, use_container_width=True)
            else:
                st.dataframe(result.to_frame(), hide_index=True)
            if result.labels and spec.type not in (ChartType.HISTOGRAM,):
                label = st.selectbox("Highlight", ["(none)"] + list(result.labels))
                if label != "(none)":
                    highlighted = dash.highlight(ChartSelection(spec, label))

with map_col:
    with card("Map"):
        payload = map_markers(records, highlighted=sorted(highlighted))
        if payload["markers"]:
            df_map = pd.DataFrame(payload["markers"])
            st.map(df_map, latitude="lat", longitude="lon")
            chosen = st.selectbox("Vendor detail", ["(none)"] + [f"{m['id']}: {m['name']}" for m in payload["markers"]])
            if chosen != "(none)":
                record_id = int(chosen.split(":", 1)[0])
                highlighted = dash.highlight(PointSelection(record_id))
                st.json(record_detail(bundle.records[record_id]))
        else:
            st.info("No records with coordinates.")
        if payload["without_coordinates"]:
            st.caption(f"{payload['without_coordinates']} record(s) have no coordinates.")

if overview["payments_trend"] is not None:
    with card("Monthly Payments"):
        st.vega_lite_chart(overview["payments_trend"]["chart"], use_container_width=True)

with card("Records"):
    export_df = dash.export_frame()
    if highlighted:
        export_df = export_df[export_df["id"].isin(highlighted)]
    st.dataframe(export_df, hide_index=True)
    st.download_button(
        "Export CSV",
        data=export_df.to_csv(index=False).encode("utf-8"),
        file_name="records.csv",
        mime="text/csv",
    )

with st.expander("Data Quality / Debug"):
    st.write(compute_data_quality(bundle))
    st.dataframe(
        pd.DataFrame([{"column": p.name, "role": p.role.value, "confidence": p.confidence} for p in bundle.profiles]),
        hide_index=True,
    )
