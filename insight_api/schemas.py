from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class RangeModel(BaseModel):
    min: Optional[Any] = None
    max: Optional[Any] = None


class FiltersModel(BaseModel):
    equals: Dict[str, Any] = Field(default_factory=dict)
    ranges: Dict[str, RangeModel] = Field(default_factory=dict)
    search: str = ""


class VisualizeRequest(BaseModel):
    chart_type: str = "auto"
    top_n: Optional[int] = None
    category: Optional[str] = None
    value: Optional[str] = None
    x: Optional[str] = None
    y: Optional[str] = None
    size: Optional[str] = None


class HighlightRequest(BaseModel):
    """Exactly one of `label` (chart element of the active chart) or `record_id` (marker/point); neither clears."""

    label: Optional[str] = None
    record_id: Optional[int] = None
