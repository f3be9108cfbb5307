from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional, Sequence, Union

from insight_core.aggregate import CATEGORY_CHARTS, POINT_CHARTS, ChartSpec, ChartType, category_label
from insight_core.coerce import month_bucket
from insight_core.normalize import Record


@dataclass(frozen=True)
class ChartSelection:
    """A clicked bar / slice / tile (category label) or line point (month bucket)."""

    spec: ChartSpec
    label: Optional[str] = None


@dataclass(frozen=True)
class PointSelection:
    """A clicked map marker or scatter/bubble point."""

    record_id: Optional[int] = None


Selection = Union[ChartSelection, PointSelection]

NO_HIGHLIGHT: FrozenSet[int] = frozenset()


def records_for(selection: Optional[Selection], records: Sequence[Record]) -> FrozenSet[int]:
    """Resolve a selection against the currently filtered records.

    The grouping key is re-derived the same way aggregation derives it. An
    empty click, or a chart without a grouping key, yields the empty set.
    """
    if selection is None:
        return NO_HIGHLIGHT

    if isinstance(selection, PointSelection):
        if selection.record_id is None:
            return NO_HIGHLIGHT
        return frozenset(r.id for r in records if r.id == selection.record_id)

    if selection.label is None:
        return NO_HIGHLIGHT
    spec = selection.spec
    if spec.type in CATEGORY_CHARTS and spec.category:
        return frozenset(r.id for r in records if category_label(r, spec.category) == selection.label)
    if spec.type == ChartType.LINE:
        return frozenset(r.id for r in records if month_bucket(r.date) == selection.label)
    if spec.type in POINT_CHARTS:
        # points carry record ids as their labels in the rendered chart
        try:
            wanted = int(selection.label)
        except ValueError:
            return NO_HIGHLIGHT
        return frozenset(r.id for r in records if r.id == wanted)
    return NO_HIGHLIGHT
