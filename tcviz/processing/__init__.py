"""
Track Explorer Processing Module

Pure computations over cyclone tracks: segment rasterization, density grid
aggregation, summary metrics and filtering.
"""

from .density import DensityGrid, GridAggregator, compute_density_grid
from .filters import filter_cyclones
from .metrics import (
    CycloneMetrics,
    DensityMetrics,
    annual_average,
    calculate_cyclone_metrics,
    calculate_density_metrics,
)
from .rasterizer import cell_key, normalize_longitude, rasterize_segment

__all__ = [
    "DensityGrid",
    "GridAggregator",
    "compute_density_grid",
    "filter_cyclones",
    "CycloneMetrics",
    "DensityMetrics",
    "annual_average",
    "calculate_cyclone_metrics",
    "calculate_density_metrics",
    "cell_key",
    "normalize_longitude",
    "rasterize_segment",
]
