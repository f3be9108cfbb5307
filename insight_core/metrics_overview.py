from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Sequence

import pandas as pd

from insight_core.aggregate import AggregationResult, ChartSpec, ChartType, aggregate
from insight_core.charts import build_chart, to_vega_spec
from insight_core.normalize import Record, records_to_frame
from insight_core.schema import FieldMapping

MILLION = 1_000_000


def round_half_up(value: float, places: int = 2) -> float:
    quant = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quant, rounding=ROUND_HALF_UP))


def _payments_trend(records: Sequence[Record], mapping: Optional[FieldMapping]) -> Optional[Dict[str, Any]]:
    if mapping is None or not mapping.has_date or not mapping.is_mapped("payments"):
        return None
    result = aggregate(records, ChartSpec(ChartType.LINE, value="payments"))
    if not isinstance(result, AggregationResult) or not result.labels:
        return None
    return {
        "months": list(result.labels),
        "payments": list(result.values),
        "chart": to_vega_spec(build_chart(result)),
    }


def compute_overview(records: Sequence[Record], mapping: Optional[FieldMapping] = None) -> Dict[str, Any]:
    """KPI tiles for the filtered records, plus the monthly payments trend when dates are mapped."""
    df: pd.DataFrame = records_to_frame(records)
    total = int(len(df))
    total_spend = float(df["spend"].sum()) if total else 0.0
    total_payments = float(df["payments"].sum()) if total else 0.0
    with_po = int(df["has_purchase_order"].astype(bool).sum()) if total else 0

    return {
        "kpis": {
            "total_vendors": total,
            "total_invoices": int(round(float(df["invoice_count"].sum()))) if total else 0,
            "total_spend": total_spend,
            "total_payments": total_payments,
            "total_spend_m": round_half_up(total_spend / MILLION),
            "total_payments_m": round_half_up(total_payments / MILLION),
            "percent_with_po": int(round(with_po / max(1, total) * 100)),
        },
        "payments_trend": _payments_trend(records, mapping),
    }
