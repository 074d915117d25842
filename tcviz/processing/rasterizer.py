"""
Track Segment Rasterization

Finds every cell of a regular lat/lon grid that a straight track segment
passes through. Work happens in "cell space", where one unit equals one
grid cell: x = (lon + 180) / resolution, y = (lat + 90) / resolution.

The segment is sampled at least twice per cell-diagonal unit, and at each
sample the 3x3 block of cells around the sample is tested with an exact
segment/box intersection (slab method), so a segment that only clips the
corner of a cell between two samples is still picked up.
"""

import math
from typing import Set, Tuple

from ..geo import LAT_MAX, LAT_MIN, LON_MAX, LON_MIN, normalize_longitude, shortest_lon_delta

CellKey = Tuple[int, int]  # (lat_index, lon_index)

_EPS = 1e-12


def cell_key(lat: float, lon: float, resolution: float) -> CellKey:
    """Grid cell containing a point (longitude is wrapped first)"""
    lon = normalize_longitude(lon)
    return (
        math.floor((lat - LAT_MIN) / resolution),
        math.floor((lon - LON_MIN) / resolution),
    )


def cell_origin(key: CellKey, resolution: float) -> Tuple[float, float]:
    """South-west corner (lat, lon) of a cell"""
    lat_idx, lon_idx = key
    return lat_idx * resolution + LAT_MIN, lon_idx * resolution + LON_MIN


def grid_shape(resolution: float) -> Tuple[int, int]:
    """Number of (lat, lon) cells covering the globe at a resolution"""
    return (
        math.ceil((LAT_MAX - LAT_MIN) / resolution - _EPS),
        math.ceil((LON_MAX - LON_MIN) / resolution - _EPS),
    )


def cell_in_bounds(key: CellKey, resolution: float) -> bool:
    """True if the cell's origin lies in [-90, 90) x [-180, 180)"""
    n_lat, n_lon = grid_shape(resolution)
    lat_idx, lon_idx = key
    return 0 <= lat_idx < n_lat and 0 <= lon_idx < n_lon


def segment_crosses_cell(x1: float, y1: float, x2: float, y2: float, cx: int, cy: int) -> bool:
    """
    Slab test of the segment (x1, y1)-(x2, y2) against the unit cell [cx, cx+1) x [cy, cy+1).

    A cell counts only when the segment runs through it for a positive
    length; merely touching an edge or corner does not count. A segment
    lying exactly on a grid line belongs to the cell above / east of it,
    matching floor-based binning of points.

    Args:
        x1, y1: Segment start in cell space
        x2, y2: Segment end in cell space
        cx, cy: Integer cell indices

    Returns:
        True if the segment passes through the cell
    """
    t_min, t_max = 0.0, 1.0
    for p, d, lo in ((x1, x2 - x1, cx), (y1, y2 - y1, cy)):
        hi = lo + 1
        if abs(d) < _EPS:
            # Parallel to this slab
            if p < lo or p >= hi:
                return False
            continue
        t1 = (lo - p) / d
        t2 = (hi - p) / d
        if t1 > t2:
            t1, t2 = t2, t1
        t_min = max(t_min, t1)
        t_max = min(t_max, t2)
        if t_min >= t_max:
            return False
    return True


def cells_along_segment(x1: float, y1: float, x2: float, y2: float) -> Set[CellKey]:
    """
    Integer cells crossed by a segment given in continuous cell space.

    Returns:
        Set of (y_index, x_index) keys, unbounded (no wrapping or clipping)
    """
    if abs(x2 - x1) < _EPS and abs(y2 - y1) < _EPS:
        return {(math.floor(y1), math.floor(x1))}

    distance = math.hypot(x2 - x1, y2 - y1)
    steps = max(math.ceil(distance * 2), 2)

    cells: Set[CellKey] = set()
    tested: Set[CellKey] = set()
    for i in range(steps + 1):
        t = i / steps
        sx = math.floor(x1 + (x2 - x1) * t)
        sy = math.floor(y1 + (y2 - y1) * t)
        for cy in (sy - 1, sy, sy + 1):
            for cx in (sx - 1, sx, sx + 1):
                if (cy, cx) in tested:
                    continue
                tested.add((cy, cx))
                if segment_crosses_cell(x1, y1, x2, y2, cx, cy):
                    cells.add((cy, cx))
    return cells


def rasterize_segment(lat1: float, lon1: float, lat2: float, lon2: float,
                      resolution: float) -> Set[CellKey]:
    """
    Grid cells crossed by the track segment between two points.

    The segment takes the shorter way round the globe, so a segment from
    179E to 179W crosses the antimeridian rather than the whole map. The
    part of such a segment beyond +/-180 longitude yields no cells, and
    neither does anything outside [-90, 90) latitude; the far endpoint's
    own cell is added by the caller when it bins the track points.

    Args:
        lat1, lon1: Start point in degrees
        lat2, lon2: End point in degrees
        resolution: Cell size in degrees

    Returns:
        Set of (lat_index, lon_index) keys
    """
    if resolution <= 0:
        raise ValueError(f"Grid resolution must be positive, got {resolution}")

    lon1 = normalize_longitude(lon1)
    lon2 = lon1 + shortest_lon_delta(lon1, normalize_longitude(lon2))

    x1 = (lon1 - LON_MIN) / resolution
    y1 = (lat1 - LAT_MIN) / resolution
    x2 = (lon2 - LON_MIN) / resolution
    y2 = (lat2 - LAT_MIN) / resolution

    return {key for key in cells_along_segment(x1, y1, x2, y2) if cell_in_bounds(key, resolution)}
