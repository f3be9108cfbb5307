from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from insight_core.ingest import IngestResult, Sheet
from insight_core.normalize import Record, count_blank, normalize
from insight_core.schema import ColumnProfile, FieldMapping, infer
from insight_core.settings import InferenceSettings, get_settings

logger = logging.getLogger(__name__)


SAMPLE_NAME = "sample_vendors.csv"
SAMPLE_CSV = """VendorName,Latitude,Longitude,City,Region,TotalSpend,TotalPayments,InvoiceCount,PaymentType,HasPO,InvoiceDate
Acme Supplies,37.7749,-122.4194,San Francisco,North America,1250000,1200000,75,Credit,TRUE,2024-02-10
Global Components,51.5074,-0.1278,London,EMEA,980000,980000,40,Wire,TRUE,2024-03-14
Asia Parts Co,1.3521,103.8198,Singapore,APAC,420000,400000,28,Credit,FALSE,2024-01-20
Continental Traders,-33.8688,151.2093,Sydney,APAC,780000,770000,32,Wire,TRUE,2024-04-02
Nordic Supplies,59.3293,18.0686,Stockholm,EMEA,330000,330000,18,Card,FALSE,2024-05-12
"""


@dataclass(frozen=True)
class DatasetBundle:
    """One loaded dataset: profiles, mapping and records always travel together."""

    name: str
    format: str
    sheet_names: Tuple[str, ...]
    active_sheet: str
    columns: Tuple[str, ...]
    profiles: Tuple[ColumnProfile, ...]
    mapping: FieldMapping
    records: Tuple[Record, ...]

    @property
    def record_count(self) -> int:
        return len(self.records)

    def record(self, record_id: int) -> Optional[Record]:
        if 0 <= record_id < len(self.records):
            return self.records[record_id]
        return None

    def distinct_values(self, field: str) -> List[str]:
        """Sorted distinct coerced values of a category or flag field (filter dropdowns)."""
        return sorted({r.text(field) for r in self.records})


def build_bundle(
    result: IngestResult,
    *,
    sheets: Optional[Sequence[str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
    name: Optional[str] = None,
    settings: Optional[InferenceSettings] = None,
) -> DatasetBundle:
    """Select the active sheet, infer its schema and normalize its rows."""
    sheet: Sheet = result.select(sheets)
    settings = settings or get_settings().inference
    inference = infer(sheet.rows, sheet.columns, overrides=overrides, settings=settings)
    records = normalize(sheet.rows, inference.mapping)
    logger.info(
        "Built dataset %s (sheet=%s, rows=%d, mapped=%s)",
        name or sheet.name,
        sheet.name,
        len(records),
        ",".join(inference.mapping.columns),
    )
    return DatasetBundle(
        name=name or sheet.name,
        format=result.format,
        sheet_names=tuple(result.sheet_names),
        active_sheet=sheet.name,
        columns=tuple(sheet.columns),
        profiles=inference.profiles,
        mapping=inference.mapping,
        records=tuple(records),
    )


def compute_data_quality(bundle: DatasetBundle) -> Dict[str, object]:
    """Blank-cell counts for mapped columns and mapping strategies, for the debug view."""
    rows = [r.raw for r in bundle.records]
    mapping = bundle.mapping
    return {
        "rows": len(rows),
        "columns": len(bundle.columns),
        "mapped": mapping.as_dict(),
        "strategies": dict(mapping.strategies),
        "unmapped_columns": [c for c in bundle.columns if c not in mapping.columns.values()],
        "blank_cells": {canonical: count_blank(rows, source) for canonical, source in mapping.columns.items()},
        "records_with_coordinates": sum(1 for r in bundle.records if r.coordinates is not None),
        "records_with_date": sum(1 for r in bundle.records if r.date is not None),
    }
