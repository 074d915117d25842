"""
Track Density Aggregation

Builds a global frequency grid counting, for each cell, how many distinct
cyclones passed through it. A cyclone contributes at most once per cell no
matter how often its track re-enters that cell.

Consecutive track points are joined by rasterized segments unless they are
20 degrees or more apart in latitude or longitude; such jumps are treated
as data gaps (missing fixes, antimeridian artefacts) and only their
endpoints are counted.

Note that this is a pragmatic "track density" heuristic and not a
physically rigorous measure: the gap threshold and the 2x-per-cell sampling
rate are kept fixed so grids stay comparable with previously published
output.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

import numpy as np

from ..config import DEFAULT_GRID_RESOLUTION, TRACK_GAP_THRESHOLD_DEG
from ..models import Cyclone, GridCell
from .rasterizer import (
    CellKey,
    cell_in_bounds,
    cell_key,
    cell_origin,
    grid_shape,
    rasterize_segment,
    shortest_lon_delta,
)


@dataclass
class DensityGrid:
    """Cyclone counts per grid cell, plus summary statistics"""
    resolution: float
    counts: Dict[CellKey, int] = field(default_factory=dict)

    @property
    def active_cells(self) -> int:
        return sum(1 for c in self.counts.values() if c > 0)

    @property
    def max_count(self) -> int:
        return max(self.counts.values(), default=0)

    @property
    def total_count(self) -> int:
        return sum(self.counts.values())

    @property
    def mean_count(self) -> float:
        """Mean count per active cell (0 for an empty grid)"""
        active = self.active_cells
        return self.total_count / active if active else 0.0

    def __getitem__(self, key: CellKey) -> int:
        return self.counts.get(key, 0)

    def __len__(self) -> int:
        return len(self.counts)

    def cell_bounds(self, key: CellKey) -> Tuple[float, float, float, float]:
        """(lat_south, lat_north, lon_west, lon_east) of a cell"""
        lat, lon = cell_origin(key, self.resolution)
        return lat, lat + self.resolution, lon, lon + self.resolution

    def to_cells(self) -> List[GridCell]:
        """Active cells as GridCell records, sorted by (iy, ix)"""
        cells = []
        for key in sorted(self.counts):
            count = self.counts[key]
            if count <= 0:
                continue
            south, north, west, east = self.cell_bounds(key)
            cells.append(GridCell(
                ix=key[1],
                iy=key[0],
                count=count,
                lon_west=west,
                lon_east=east,
                lat_south=south,
                lat_north=north,
                lon_center=(west + east) / 2,
                lat_center=(south + north) / 2,
            ))
        return cells

    def to_array(self) -> np.ndarray:
        """Dense (n_lat, n_lon) integer array, row 0 at the south pole"""
        arr = np.zeros(grid_shape(self.resolution), dtype=np.int64)
        for (lat_idx, lon_idx), count in self.counts.items():
            arr[lat_idx, lon_idx] = count
        return arr


def is_track_gap(lat1: float, lon1: float, lat2: float, lon2: float,
                 threshold: float = TRACK_GAP_THRESHOLD_DEG) -> bool:
    """True if two consecutive points are too far apart to join with a segment"""
    lat_diff = abs(lat2 - lat1)
    lon_diff = abs(shortest_lon_delta(lon1, lon2))
    return not (lat_diff < threshold and lon_diff < threshold)


class GridAggregator:
    """
    Aggregates cyclone tracks into a DensityGrid.

    Stateless between calls; one instance can be shared freely.
    """

    def __init__(self, resolution: float = DEFAULT_GRID_RESOLUTION,
                 gap_threshold: float = TRACK_GAP_THRESHOLD_DEG):
        """
        Args:
            resolution: Cell size in degrees
            gap_threshold: Segments spanning this many degrees (either axis) are not rasterized
        """
        if resolution <= 0:
            raise ValueError(f"Grid resolution must be positive, got {resolution}")
        self.resolution = float(resolution)
        self.gap_threshold = gap_threshold

    def cells_for_cyclone(self, cyclone: Cyclone) -> Set[CellKey]:
        """Every in-bounds cell touched by one cyclone's track"""
        track = cyclone.track
        visited: Set[CellKey] = set()

        for i, point in enumerate(track):
            key = cell_key(point.lat, point.lon, self.resolution)
            if cell_in_bounds(key, self.resolution):
                visited.add(key)

            if i + 1 < len(track):
                nxt = track[i + 1]
                if is_track_gap(point.lat, point.lon, nxt.lat, nxt.lon, self.gap_threshold):
                    continue
                visited.update(rasterize_segment(point.lat, point.lon, nxt.lat, nxt.lon, self.resolution))

        return visited

    def aggregate(self, cyclones: Iterable[Cyclone]) -> DensityGrid:
        """
        Count distinct cyclones per grid cell.

        Args:
            cyclones: Cyclones to aggregate (order does not matter)

        Returns:
            A new DensityGrid
        """
        counts: Dict[CellKey, int] = {}
        for cyclone in cyclones:
            if not cyclone.track:
                continue
            for key in self.cells_for_cyclone(cyclone):
                counts[key] = counts.get(key, 0) + 1
        return DensityGrid(resolution=self.resolution, counts=counts)


def compute_density_grid(cyclones: Iterable[Cyclone],
                         resolution: float = DEFAULT_GRID_RESOLUTION) -> DensityGrid:
    """Convenience wrapper around GridAggregator.aggregate"""
    return GridAggregator(resolution).aggregate(cyclones)
