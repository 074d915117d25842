"""
Cyclone Track Records

Immutable records for cyclone tracks returned by the data API and for the
cells of precomputed density grids, plus the parsers that build them from
raw JSON / CSV values.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import category_for_wind
from .geo import normalize_longitude

logger = logging.getLogger(__name__)


def sanitize_text(value: Any, max_length: int = 200) -> str:
    """
    Clean a free-text value from the data API.

    Args:
        value: Raw value (any type)
        max_length: Maximum allowed length

    Returns:
        Stripped string with control characters removed
    """
    if value is None:
        return ""
    value = str(value).strip()
    if len(value) > max_length:
        value = value[:max_length]
    return re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', value)


def sanitize_numeric(value: Any, default: Optional[float] = 0.0,
                     min_val: float = None, max_val: float = None) -> Optional[float]:
    """
    Safely parse a numeric value with bounds clamping.

    Args:
        value: The raw value
        default: Returned if parsing fails
        min_val: Minimum allowed value (optional)
        max_val: Maximum allowed value (optional)

    Returns:
        Parsed and bounded float value
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(str(value).strip())
    except (ValueError, TypeError):
        return default
    if result != result:  # NaN
        return default
    if min_val is not None and result < min_val:
        return min_val
    if max_val is not None and result > max_val:
        return max_val
    return result


@dataclass(frozen=True)
class CyclonePoint:
    """A single 6-hourly point in a cyclone's track"""
    lat: float
    lon: float
    date: str
    category: int
    wind_speed: float  # km/h
    pressure: float  # hPa


@dataclass(frozen=True)
class Cyclone:
    """A complete simulated cyclone; aggregates are derived from the track"""
    id: str
    name: str
    year: int
    track: Tuple[CyclonePoint, ...]
    max_category: int
    max_wind: float
    min_pressure: float
    genesis_lat: Optional[float] = None
    genesis_lon: Optional[float] = None
    genesis_month: Optional[int] = None
    landfall: bool = False
    duration: Optional[float] = None  # days

    @property
    def genesis(self) -> Optional[CyclonePoint]:
        return self.track[0] if self.track else None


@dataclass(frozen=True)
class GridCell:
    """One row of a precomputed density file"""
    ix: int
    iy: int
    count: int
    lon_west: float
    lon_east: float
    lat_south: float
    lat_north: float
    lon_center: float
    lat_center: float
    extra: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)


def parse_track_point(raw: Dict[str, Any]) -> Optional[CyclonePoint]:
    """Build a CyclonePoint, returning None when lat/lon are unusable"""
    lat = sanitize_numeric(raw.get('lat'), default=None, min_val=-90, max_val=90)
    lon = sanitize_numeric(raw.get('lon'), default=None)
    if lat is None or lon is None or not math.isfinite(lon):
        return None
    lon = normalize_longitude(lon)

    wind = sanitize_numeric(raw.get('windSpeed'), default=0.0, min_val=0)
    pressure = sanitize_numeric(raw.get('pressure'), default=None)
    if pressure is not None and pressure <= 0:
        pressure = None

    category = raw.get('category')
    if category is None or isinstance(category, bool):
        category = category_for_wind(wind)
    else:
        category = int(sanitize_numeric(category, default=0, min_val=0, max_val=5))

    return CyclonePoint(
        lat=lat,
        lon=lon,
        date=sanitize_text(raw.get('date', ''), max_length=30),
        category=category,
        wind_speed=wind,
        pressure=pressure if pressure is not None else 1013.0,
    )


def parse_cyclone(record: Dict[str, Any]) -> Cyclone:
    """
    Build an immutable Cyclone from one record of the data API.

    Track aggregates (max category, max wind, min pressure, genesis position)
    are recomputed from the track whenever it has points, so they can never
    disagree with it. Record-level values are used only for track-less
    cyclones.

    Args:
        record: One element of the API's ``cyclones`` array

    Returns:
        Parsed Cyclone

    Raises:
        ValueError: If the record is not a mapping or has no id
    """
    if not isinstance(record, dict):
        raise ValueError(f"Cyclone record must be an object, got {type(record).__name__}")

    cyclone_id = sanitize_text(record.get('id', ''), max_length=50)
    if not cyclone_id:
        raise ValueError("Cyclone record has no id")

    track: List[CyclonePoint] = []
    skipped = 0
    for raw_point in record.get('track') or []:
        if not isinstance(raw_point, dict):
            skipped += 1
            continue
        point = parse_track_point(raw_point)
        if point is None:
            skipped += 1
            continue
        track.append(point)
    if skipped:
        logger.debug(f"Cyclone {cyclone_id}: skipped {skipped} malformed track points")

    if track:
        max_category = max(p.category for p in track)
        max_wind = max(p.wind_speed for p in track)
        min_pressure = min(p.pressure for p in track)
        genesis_lat = track[0].lat
        genesis_lon = track[0].lon
    else:
        max_category = int(sanitize_numeric(record.get('maxCategory'), default=0, min_val=0, max_val=5))
        max_wind = sanitize_numeric(record.get('maxWind'), default=0.0, min_val=0)
        min_pressure = sanitize_numeric(record.get('minPressure'), default=1013.0, min_val=1)
        genesis_lat = sanitize_numeric(record.get('genesis_lat'), default=None, min_val=-90, max_val=90)
        genesis_lon = sanitize_numeric(record.get('genesis_lon'), default=None)
        if genesis_lon is not None:
            genesis_lon = normalize_longitude(genesis_lon) if math.isfinite(genesis_lon) else None

    genesis_month = sanitize_numeric(record.get('genesis_month'), default=None, min_val=1, max_val=12)
    duration = sanitize_numeric(
        record.get('duration_days', record.get('duration')), default=None, min_val=0
    )

    return Cyclone(
        id=cyclone_id,
        name=sanitize_text(record.get('name', 'UNNAMED'), max_length=100) or 'UNNAMED',
        year=int(sanitize_numeric(record.get('year'), default=0)),
        track=tuple(track),
        max_category=max_category,
        max_wind=max_wind,
        min_pressure=min_pressure,
        genesis_lat=genesis_lat,
        genesis_lon=genesis_lon,
        genesis_month=int(genesis_month) if genesis_month is not None else None,
        landfall=bool(record.get('landfall', False)),
        duration=duration,
    )


def parse_cyclones(records: List[Dict[str, Any]]) -> List[Cyclone]:
    """Parse a list of API records, skipping malformed ones"""
    cyclones = []
    for record in records:
        try:
            cyclones.append(parse_cyclone(record))
        except ValueError as e:
            logger.warning(f"Skipping malformed cyclone record: {e}")
    return cyclones
