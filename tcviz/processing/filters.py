"""Cyclone list filters used before rendering and export."""

from typing import List, Optional, Sequence

from ..config import AUSTRALIA_BOUNDS
from ..models import Cyclone


def is_in_australian_region(lat: float, lon: float) -> bool:
    b = AUSTRALIA_BOUNDS
    return b["south"] <= lat <= b["north"] and b["west"] <= lon <= b["east"]


def has_australian_track(cyclone: Cyclone) -> bool:
    return any(is_in_australian_region(p.lat, p.lon) for p in cyclone.track)


def filter_cyclones(cyclones: Sequence[Cyclone],
                    year_range=None,
                    min_category: Optional[int] = None,
                    region: Optional[str] = None,
                    landfall_only: bool = False) -> List[Cyclone]:
    """
    Apply the optional filters in order: year range, category, region, landfall.

    Args:
        cyclones: Source list (left untouched)
        year_range: A YearRange, or None for all years
        min_category: Keep cyclones with max_category >= this
        region: 'australia' to keep cyclones with a track point in the region
        landfall_only: Keep only cyclones that made landfall

    Returns:
        New filtered list
    """
    filtered = list(cyclones)

    if year_range is not None:
        filtered = [c for c in filtered if year_range.contains(c.year)]

    if min_category:
        filtered = [c for c in filtered if c.max_category >= min_category]

    if region == "australia":
        filtered = [c for c in filtered if has_australian_track(c)]

    if landfall_only:
        filtered = [c for c in filtered if c.landfall]

    return filtered
