"""Shared pytest fixtures."""

import asyncio
from typing import Dict, List, Optional

import pytest

from tcviz.api.cyclones import CycloneDataset
from tcviz.errors import DataFetchFailure, DensityResourceUnavailable
from tcviz.models import Cyclone, CyclonePoint, GridCell
from tcviz.state import ScenarioSelection


def make_point(lat: float, lon: float, category: int = 1, wind: float = 70.0,
               pressure: float = 990.0, date: str = "2000-01-01 00:00") -> CyclonePoint:
    return CyclonePoint(lat=lat, lon=lon, date=date, category=category,
                        wind_speed=wind, pressure=pressure)


def make_cyclone(cyclone_id: str = "TC0001", year: int = 2000, track=None,
                 max_category: Optional[int] = None, landfall: bool = False,
                 name: str = "ALPHA", genesis_month: Optional[int] = 1,
                 duration: Optional[float] = 3.5) -> Cyclone:
    """Build a Cyclone; aggregates default to values derived from the track."""
    if track is None:
        track = [make_point(-15.0, 130.0), make_point(-16.0, 131.0)]
    track = tuple(track)
    if max_category is None:
        max_category = max((p.category for p in track), default=0)
    return Cyclone(
        id=cyclone_id,
        name=name,
        year=year,
        track=track,
        max_category=max_category,
        max_wind=max((p.wind_speed for p in track), default=0.0),
        min_pressure=min((p.pressure for p in track), default=1013.0),
        genesis_lat=track[0].lat if track else None,
        genesis_lon=track[0].lon if track else None,
        genesis_month=genesis_month,
        landfall=landfall,
        duration=duration,
    )


def make_grid_cell(ix: int, iy: int, count: int, resolution: float = 2.0, **extra) -> GridCell:
    west = ix * resolution - 180.0
    south = iy * resolution - 90.0
    return GridCell(
        ix=ix, iy=iy, count=count,
        lon_west=west, lon_east=west + resolution,
        lat_south=south, lat_north=south + resolution,
        lon_center=west + resolution / 2, lat_center=south + resolution / 2,
        extra=extra,
    )


class FakeDataManager:
    """
    In-memory stand-in for CycloneDataManager.

    Datasets are served from ``datasets`` keyed by cache key. When ``gates``
    holds an asyncio.Future for a key, load_data waits on it first, which
    lets a test decide the order in which concurrent loads complete.
    """

    def __init__(self, datasets: Optional[Dict[str, List[Cyclone]]] = None,
                 density: Optional[Dict[str, List[GridCell]]] = None):
        self.datasets = datasets or {}
        self.density = density or {}
        self.cache: Dict[str, CycloneDataset] = {}
        self.gates: Dict[str, asyncio.Future] = {}
        self.density_gates: Dict[str, asyncio.Future] = {}
        self.load_calls: List[str] = []
        self.density_calls: List[str] = []
        self.fail_keys = set()

    def get_cached(self, selection: ScenarioSelection) -> Optional[CycloneDataset]:
        return self.cache.get(selection.cache_key)

    async def load_data(self, selection: ScenarioSelection, force_refresh: bool = False):
        key = selection.cache_key
        self.load_calls.append(key)
        if key in self.gates:
            await self.gates[key]
        if key in self.fail_keys:
            raise DataFetchFailure(f"boom {key}")
        if not force_refresh and key in self.cache:
            return self.cache[key]
        cyclones = self.datasets.get(key, [])
        dataset = CycloneDataset(selection, list(cyclones), total_cyclones=len(cyclones))
        self.cache[key] = dataset
        return dataset

    async def fetch_precomputed_density(self, selection: ScenarioSelection) -> List[GridCell]:
        key = selection.cache_key
        self.density_calls.append(key)
        if key in self.density_gates:
            await self.density_gates[key]
        cells = self.density.get(key)
        if not cells:
            raise DensityResourceUnavailable(f"no density for {key}")
        return cells


@pytest.fixture()
def ten_cyclones() -> List[Cyclone]:
    """Ten cyclones, three of them category 3 or above, one per year from 1960."""
    categories = [1, 2, 3, 1, 4, 2, 1, 5, 2, 1]
    return [
        make_cyclone(
            cyclone_id=f"TC{i:04d}",
            year=1960 + i,
            track=[make_point(-12.0 - i, 120.0 + i, category=cat, wind=60.0 + 30 * cat),
                   make_point(-13.0 - i, 121.0 + i, category=cat, wind=60.0 + 30 * cat)],
            landfall=(i % 2 == 0),
        )
        for i, cat in enumerate(categories)
    ]


@pytest.fixture()
def fake_manager(ten_cyclones) -> FakeDataManager:
    return FakeDataManager(datasets={"current_1": ten_cyclones})
