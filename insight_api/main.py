from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional

import numpy as np
import pandas as pd
from fastapi import FastAPI, File, Form, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from insight_api.schemas import FiltersModel, HighlightRequest, VisualizeRequest
from insight_core.aggregate import AggregationError
from insight_core.charts import build_chart, to_vega_spec
from insight_core.dashboard import Dashboard
from insight_core.data import DatasetBundle, compute_data_quality
from insight_core.filters import EQUALS_FIELDS, normalize_filters
from insight_core.highlight import ChartSelection, PointSelection
from insight_core.ingest import IngestError
from insight_core.metrics_map import map_markers, record_detail
from insight_core.metrics_overview import compute_overview
from insight_core.settings import get_settings


app = FastAPI(title="Data Intelligence Dashboard API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

dashboard = Dashboard()


def reset_dashboard() -> Dashboard:
    """Replace the session dashboard (used on startup and by tests)."""
    global dashboard
    dashboard = Dashboard()
    return dashboard


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
                datetime: lambda dt: dt.isoformat(),
            },
        ),
    )


def _failure(name: str, exc: Exception) -> JSONResponse:
    logger.exception("%s failed", name)
    return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


def _no_dataset() -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": "no_dataset", "detail": "Load a dataset first."})


def _bundle_payload(bundle: DatasetBundle) -> dict:
    return {
        "name": bundle.name,
        "format": bundle.format,
        "sheet_names": list(bundle.sheet_names),
        "active_sheet": bundle.active_sheet,
        "columns": list(bundle.columns),
        "record_count": bundle.record_count,
        "profiles": [
            {
                "name": p.name,
                "role": p.role.value,
                "confidence": p.confidence,
                "non_empty": p.non_empty,
                "sampled": p.sampled,
            }
            for p in bundle.profiles
        ],
        "mapping": bundle.mapping.as_dict(),
        "strategies": dict(bundle.mapping.strategies),
    }


def _load_response(outcome) -> JSONResponse:
    if outcome is None:
        return JSONResponse(status_code=409, content={"error": "superseded", "detail": "A newer upload replaced this one."})
    if isinstance(outcome, IngestError):
        return JSONResponse(status_code=422, content=outcome.to_dict())
    return _json(_bundle_payload(outcome))


@app.post("/datasets")
async def upload_dataset(
    file: UploadFile = File(...),
    format: Optional[str] = Form(default=None),
    sheet: Optional[str] = Form(default=None),
):
    try:
        outcome = await dashboard.load_async(
            file.read,
            format,
            filename=file.filename,
            sheets=[sheet] if sheet else None,
        )
        return _load_response(outcome)
    except Exception as exc:
        return _failure("upload_dataset", exc)


@app.post("/datasets/sample")
def load_sample():
    try:
        return _load_response(dashboard.load_sample())
    except Exception as exc:
        return _failure("load_sample", exc)


@app.get("/meta/profile")
def meta_profile():
    try:
        bundle = dashboard.bundle
        if bundle is None:
            return _no_dataset()
        payload = _bundle_payload(bundle)
        payload["data_quality"] = compute_data_quality(bundle)
        payload["filters"] = dashboard.filters.describe()
        return _json(payload)
    except Exception as exc:
        return _failure("meta_profile", exc)


@app.get("/meta/values/{field}")
def meta_values(field: str):
    try:
        bundle = dashboard.bundle
        if bundle is None:
            return _no_dataset()
        if field not in EQUALS_FIELDS:
            return JSONResponse(status_code=422, content={"error": "unknown_field", "detail": field})
        if not bundle.mapping.is_mapped(field):
            return _json({"values": []})
        return _json({"values": bundle.distinct_values(field)})
    except Exception as exc:
        return _failure("meta_values", exc)


@app.post("/filters")
def set_filters(filters: FiltersModel):
    try:
        if dashboard.bundle is None:
            return _no_dataset()
        try:
            filter_set = normalize_filters(filters.model_dump())
        except ValueError as exc:
            return JSONResponse(status_code=422, content={"error": "invalid_filter", "detail": str(exc)})
        records = dashboard.replace_filters(filter_set)
        return _json({"filters": filter_set.describe(), "record_count": len(records), "record_ids": [r.id for r in records]})
    except Exception as exc:
        return _failure("set_filters", exc)


@app.delete("/filters")
def clear_filters():
    try:
        if dashboard.bundle is None:
            return _no_dataset()
        records = dashboard.clear_filters()
        return _json({"filters": [], "record_count": len(records)})
    except Exception as exc:
        return _failure("clear_filters", exc)


@app.post("/visualize")
def visualize(request: VisualizeRequest):
    try:
        if dashboard.bundle is None:
            return _no_dataset()
        try:
            outcome = dashboard.visualize(
                request.chart_type,
                top_n=request.top_n,
                category=request.category,
                value=request.value,
                x=request.x,
                y=request.y,
                size=request.size,
            )
        except ValueError as exc:
            return JSONResponse(status_code=422, content={"error": "unknown_chart_type", "detail": str(exc)})
        if isinstance(outcome, AggregationError):
            return JSONResponse(status_code=422, content=outcome.to_dict())
        spec, result = outcome
        return _json({"spec": spec.to_dict(), "result": result.to_dict(), "vega_lite": to_vega_spec(build_chart(result))})
    except Exception as exc:
        return _failure("visualize", exc)


@app.post("/highlight")
def highlight(request: HighlightRequest):
    try:
        if dashboard.bundle is None:
            return _no_dataset()
        if request.record_id is not None:
            selection = PointSelection(request.record_id)
        elif request.label is not None and dashboard.active_spec is not None:
            selection = ChartSelection(dashboard.active_spec, request.label)
        else:
            selection = None
        ids = dashboard.highlight(selection)
        return _json({"record_ids": sorted(ids)})
    except Exception as exc:
        return _failure("highlight", exc)


@app.get("/overview")
def overview():
    try:
        bundle = dashboard.bundle
        if bundle is None:
            return _no_dataset()
        return _json(compute_overview(dashboard.filtered_records, bundle.mapping))
    except Exception as exc:
        return _failure("overview", exc)


@app.get("/map/markers")
def markers():
    try:
        if dashboard.bundle is None:
            return _no_dataset()
        return _json(map_markers(dashboard.filtered_records))
    except Exception as exc:
        return _failure("markers", exc)


@app.get("/records/{record_id}")
def record(record_id: int):
    try:
        bundle = dashboard.bundle
        if bundle is None:
            return _no_dataset()
        found = bundle.record(record_id)
        if found is None:
            return JSONResponse(status_code=404, content={"error": "not_found", "detail": f"No record {record_id}."})
        return _json(record_detail(found))
    except Exception as exc:
        return _failure("record", exc)


def _csv(df: pd.DataFrame, filename: str) -> Response:
    csv_bytes = df.to_csv(index=False).encode("utf-8")
    return Response(content=csv_bytes, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})


@app.get("/export/records")
def export_records():
    if dashboard.bundle is None:
        return _no_dataset()
    try:
        return _csv(dashboard.export_frame(), "records.csv")
    except Exception as exc:
        return _failure("export_records", exc)


@app.get("/export/aggregation")
def export_aggregation():
    if dashboard.bundle is None:
        return _no_dataset()
    try:
        result = dashboard.last_result
        export_df = result.to_frame() if result is not None else pd.DataFrame()
        name = f"{result.spec.type.value}.csv" if result is not None else "aggregation.csv"
        return _csv(export_df, name)
    except Exception as exc:
        return _failure("export_aggregation", exc)
