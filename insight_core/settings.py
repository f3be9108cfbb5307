from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional


@dataclass(frozen=True)
class InferenceSettings:
    sample_size: int = 150
    sample_min: int = 100
    sample_max: int = 200
    numeric_threshold: float = 0.6
    temporal_threshold: float = 0.5

    def clamp_sample(self, value: Optional[int]) -> int:
        if value is None:
            value = self.sample_size
        return max(self.sample_min, min(self.sample_max, int(value)))


@dataclass(frozen=True)
class ChartSettings:
    top_n_default: int = 10
    top_n_min: int = 5
    top_n_max: int = 200
    point_cap: int = 500
    radius_min: float = 2.0
    radius_max: float = 40.0
    histogram_bins: int = 20
    # auto-detection cutoffs
    bubble_min_numeric: int = 3
    bar_min_category: int = 1
    bar_min_numeric: int = 1

    def clamp_top_n(self, value: object) -> int:
        if value is None:
            value = self.top_n_default
        try:
            top_n = int(value)  # type: ignore[arg-type]
        except Exception:
            top_n = self.top_n_default
        return max(self.top_n_min, min(self.top_n_max, top_n))


@dataclass(frozen=True)
class Settings:
    inference: InferenceSettings = field(default_factory=InferenceSettings)
    charts: ChartSettings = field(default_factory=ChartSettings)
    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:8501"]
    )


def _get_int_env(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value.strip())
    except ValueError:
        return default


def _get_list_env(name: str, default: List[str]) -> List[str]:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    values = [part.strip() for part in raw_value.split(",") if part.strip()]
    return values or default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings, honouring optional INSIGHT_* environment overrides."""
    base = Settings()
    inference = InferenceSettings(sample_size=_get_int_env("INSIGHT_SAMPLE_SIZE", base.inference.sample_size))
    charts = ChartSettings(
        top_n_default=_get_int_env("INSIGHT_TOP_N", base.charts.top_n_default),
        point_cap=max(1, _get_int_env("INSIGHT_POINT_CAP", base.charts.point_cap)),
        histogram_bins=max(1, _get_int_env("INSIGHT_HISTOGRAM_BINS", base.charts.histogram_bins)),
    )
    return Settings(
        inference=inference,
        charts=charts,
        cors_origins=_get_list_env("INSIGHT_CORS_ORIGINS", base.cors_origins),
    )
