"""
Summary Metrics

Statistics shown in the scenario comparison panels, computed either from a
filtered cyclone list or from density grid cells. All ratios report 0 when
their denominator is 0.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Sequence, Union

import numpy as np

from ..config import SEVERE_CATEGORY, SEVERITY_BUCKETS, ScenarioConfig
from ..models import Cyclone, GridCell
from .density import DensityGrid


@dataclass
class CycloneMetrics:
    """Summary of a cyclone set"""
    total_cyclones: int = 0
    severe_cyclones: int = 0
    avg_max_category: float = 0.0
    max_wind_speed: float = 0.0
    landfall_count: int = 0
    year_min: int = 0
    year_max: int = 0
    category_distribution: Dict[int, int] = field(
        default_factory=lambda: {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}
    )

    @property
    def severe_percentage(self) -> float:
        """Share of Cat 3+ cyclones, in percent (one decimal)"""
        if self.total_cyclones == 0:
            return 0.0
        return round(self.severe_cyclones / self.total_cyclones * 100, 1)

    def to_dict(self) -> Dict:
        return {
            "totalCyclones": self.total_cyclones,
            "severeCyclones": self.severe_cyclones,
            "severePercentage": self.severe_percentage,
            "avgMaxCategory": self.avg_max_category,
            "maxWindSpeed": self.max_wind_speed,
            "landfallCount": self.landfall_count,
            "yearRange": {"min": self.year_min, "max": self.year_max},
            "categoryDistribution": dict(self.category_distribution),
        }


@dataclass
class DensityMetrics:
    """Summary of a density grid"""
    active_cells: int = 0
    total_count: int = 0
    max_count: int = 0
    mean_count: float = 0.0
    severity_buckets: Dict[str, int] = field(
        default_factory=lambda: {name: 0 for name, _ in SEVERITY_BUCKETS}
    )

    def to_dict(self) -> Dict:
        return {
            "activeCells": self.active_cells,
            "totalCount": self.total_count,
            "maxCount": self.max_count,
            "meanCount": self.mean_count,
            "severityBuckets": dict(self.severity_buckets),
        }


def calculate_cyclone_metrics(cyclones: Sequence[Cyclone]) -> CycloneMetrics:
    """
    Summarize a cyclone list.

    Args:
        cyclones: Cyclones after any year/region filtering

    Returns:
        CycloneMetrics with category averages rounded to one decimal
    """
    metrics = CycloneMetrics(total_cyclones=len(cyclones))
    if not cyclones:
        return metrics

    categories = np.array([c.max_category or 0 for c in cyclones], dtype=float)
    winds = np.array([c.max_wind or 0 for c in cyclones], dtype=float)

    metrics.severe_cyclones = int(np.count_nonzero(categories >= SEVERE_CATEGORY))
    metrics.avg_max_category = round(float(categories.mean()), 1)
    metrics.max_wind_speed = float(winds.max())
    metrics.landfall_count = sum(1 for c in cyclones if c.landfall)

    for c in cyclones:
        if 1 <= c.max_category <= 5:
            metrics.category_distribution[c.max_category] += 1

    years = [c.year for c in cyclones if c.year]
    if years:
        metrics.year_min = min(years)
        metrics.year_max = max(years)
    return metrics


def _bucket_for(count: int) -> Optional[str]:
    for name, lower in SEVERITY_BUCKETS:
        if count >= lower:
            return name
    return None


def calculate_density_metrics(source: Union[DensityGrid, Iterable[GridCell]]) -> DensityMetrics:
    """
    Summarize a density grid or a list of precomputed cells.

    Cells with a zero count are ignored.
    """
    if isinstance(source, DensityGrid):
        counts = np.fromiter(source.counts.values(), dtype=np.int64, count=len(source.counts))
    else:
        counts = np.array([cell.count for cell in source], dtype=np.int64)
    counts = counts[counts > 0]

    metrics = DensityMetrics()
    if counts.size == 0:
        return metrics

    metrics.active_cells = int(counts.size)
    metrics.total_count = int(counts.sum())
    metrics.max_count = int(counts.max())
    metrics.mean_count = round(metrics.total_count / metrics.active_cells, 1)
    for count in counts.tolist():
        bucket = _bucket_for(count)
        if bucket is not None:
            metrics.severity_buckets[bucket] += 1
    return metrics


def annual_average(cyclone_count: int, scenario: ScenarioConfig,
                   year_min: Optional[int] = None, year_max: Optional[int] = None) -> float:
    """
    Cyclones per year over the active year range.

    Uses the scenario's full span when no explicit range is given.
    """
    if year_min is None or year_max is None:
        years = scenario.year_span
    else:
        years = year_max - year_min + 1
    if years <= 0:
        return 0.0
    return round(cyclone_count / years, 1)
