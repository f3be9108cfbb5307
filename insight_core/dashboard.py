from __future__ import annotations

import inspect
import itertools
import logging
from typing import Awaitable, Callable, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from insight_core.aggregate import (
    AUTO,
    AggregationError,
    AggregationErrorKind,
    AggregationResult,
    ChartSpec,
    ChartType,
    aggregate,
    select_chart,
)
from insight_core.data import SAMPLE_CSV, SAMPLE_NAME, DatasetBundle, build_bundle
from insight_core.filters import FilterPredicate, FilterSet, apply_filters
from insight_core.highlight import NO_HIGHLIGHT, Selection, records_for
from insight_core.ingest import Blob, IngestError, IngestErrorKind, ingest
from insight_core.normalize import Record, records_to_frame
from insight_core.settings import Settings, get_settings

logger = logging.getLogger(__name__)

LoadOutcome = Union[DatasetBundle, IngestError]
Visualization = Tuple[ChartSpec, AggregationResult]


class Dashboard:
    """Holds the active dataset bundle, filters and chart for one session.

    Every state change replaces a whole value (bundle, filter set, spec);
    nothing is mutated in place.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.bundle: Optional[DatasetBundle] = None
        self.filters = FilterSet()
        self.active_spec: Optional[ChartSpec] = None
        self.last_result: Optional[AggregationResult] = None
        self._tickets = itertools.count(1)
        self._latest_ticket = 0

    # ---------------- Loading ----------------
    def _load(
        self,
        source: Blob,
        format_hint: Optional[str],
        *,
        filename: Optional[str],
        sheets: Optional[Sequence[str]],
        overrides: Optional[Mapping[str, str]],
        name: Optional[str],
    ) -> LoadOutcome:
        try:
            result = ingest(source, format_hint, filename=filename)
            return build_bundle(
                result,
                sheets=sheets,
                overrides=overrides,
                name=name or filename,
                settings=self.settings.inference,
            )
        except IngestError as exc:
            logger.warning("Load of %s failed (%s); keeping previous dataset", filename or "blob", exc)
            return exc

    def _activate(self, bundle: DatasetBundle) -> None:
        self.bundle = bundle
        self.filters = FilterSet()
        self.active_spec = None
        self.last_result = None

    def load(
        self,
        source: Blob,
        format_hint: Optional[str] = None,
        *,
        filename: Optional[str] = None,
        sheets: Optional[Sequence[str]] = None,
        overrides: Optional[Mapping[str, str]] = None,
        name: Optional[str] = None,
    ) -> LoadOutcome:
        """Ingest and activate a dataset; an IngestError is returned and the previous bundle stays."""
        self._latest_ticket = next(self._tickets)
        outcome = self._load(source, format_hint, filename=filename, sheets=sheets, overrides=overrides, name=name)
        if isinstance(outcome, DatasetBundle):
            self._activate(outcome)
        return outcome

    def load_sample(self) -> LoadOutcome:
        return self.load(SAMPLE_CSV, "csv", filename=SAMPLE_NAME, name="Sample vendors")

    async def load_async(
        self,
        read: Callable[[], Union[Awaitable[Blob], Blob]],
        format_hint: Optional[str] = None,
        *,
        filename: Optional[str] = None,
        sheets: Optional[Sequence[str]] = None,
        overrides: Optional[Mapping[str, str]] = None,
        name: Optional[str] = None,
    ) -> Optional[LoadOutcome]:
        """Await `read()` and load its bytes; a load superseded by a newer one returns None."""
        ticket = next(self._tickets)
        self._latest_ticket = ticket
        try:
            source = read()
            if inspect.isawaitable(source):
                source = await source
        except OSError as exc:
            logger.warning("Could not read %s: %s", filename or "upload", exc)
            if ticket != self._latest_ticket:
                return None
            return IngestError(IngestErrorKind.PARSE_FAILURE, f"Could not read {filename or 'upload'}: {exc}")
        if ticket != self._latest_ticket:
            logger.info("Discarding stale load %d of %s (latest is %d)", ticket, filename or "blob", self._latest_ticket)
            return None
        outcome = self._load(source, format_hint, filename=filename, sheets=sheets, overrides=overrides, name=name)
        if isinstance(outcome, DatasetBundle):
            self._activate(outcome)
        return outcome

    # ---------------- Filters ----------------
    @property
    def records(self) -> Tuple[Record, ...]:
        return self.bundle.records if self.bundle is not None else ()

    @property
    def filtered_records(self) -> List[Record]:
        return apply_filters(self.records, self.filters)

    def set_filter(self, field: str, predicate: Optional[FilterPredicate]) -> List[Record]:
        self.filters = self.filters.with_filter(field, predicate)
        return self.filtered_records

    def replace_filters(self, filters: FilterSet) -> List[Record]:
        self.filters = filters
        return self.filtered_records

    def clear_filters(self) -> List[Record]:
        self.filters = FilterSet()
        return self.filtered_records

    # ---------------- Visualization ----------------
    def visualize(
        self,
        chart_type: Union[str, ChartType] = AUTO,
        *,
        top_n: Optional[int] = None,
        category: Optional[str] = None,
        value: Optional[str] = None,
        x: Optional[str] = None,
        y: Optional[str] = None,
        size: Optional[str] = None,
    ) -> Union[Visualization, AggregationError]:
        """Select and aggregate a chart; on error the active spec and last result are untouched."""
        if self.bundle is None:
            requested = chart_type.value if isinstance(chart_type, ChartType) else str(chart_type)
            return AggregationError(AggregationErrorKind.EMPTY_RECORD_SET, "No dataset loaded.", requested)
        spec = select_chart(
            self.bundle.mapping,
            chart_type,
            top_n=top_n,
            category=category,
            value=value,
            x=x,
            y=y,
            size=size,
            settings=self.settings.charts,
        )
        if isinstance(spec, AggregationError):
            logger.info("Chart request rejected: %s", spec.detail)
            return spec
        result = aggregate(self.filtered_records, spec, self.settings.charts)
        if isinstance(result, AggregationError):
            logger.info("Aggregation failed: %s", result.detail)
            return result
        self.active_spec = spec
        self.last_result = result
        return spec, result

    def highlight(self, selection: Optional[Selection]) -> FrozenSet[int]:
        if self.bundle is None:
            return NO_HIGHLIGHT
        return records_for(selection, self.filtered_records)

    # ---------------- Export ----------------
    def export_frame(self) -> pd.DataFrame:
        """Filtered records as a DataFrame: canonical columns first, then the raw source columns."""
        records = self.filtered_records
        frame = records_to_frame(records)
        if self.bundle is None or not records:
            return frame
        raw = pd.DataFrame([r.raw for r in records], columns=list(self.bundle.columns))
        raw = raw.add_prefix("source:")
        return pd.concat([frame.reset_index(drop=True), raw.reset_index(drop=True)], axis=1)
