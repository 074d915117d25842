"""
Configuration tables for the tropical-cyclone track explorer.

Scenario, SST model and intensity category tables are validated pydantic
models keyed by enum values. Deployment-specific values (endpoints, timeouts)
can be overridden through environment variables.
"""

import os
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ============================================================================
# Deployment settings
# ============================================================================

API_BASE_URL = os.getenv("TCVIZ_API_URL", "http://localhost:8080/php/api.php")
DENSITY_BASE_URL = os.getenv("TCVIZ_DENSITY_URL", "http://localhost:8080/density_data/")
API_TIMEOUT_S = float(os.getenv("TCVIZ_API_TIMEOUT", "60"))
RETRY_ATTEMPTS = 3
RETRY_DELAY_S = 1.0

DEFAULT_GRID_RESOLUTION = 2.0
DEVICE_GRID_RESOLUTION = {
    "desktop": 2.0,
    "tablet": 3.0,
    "mobile": 4.0,
}

# Segments longer than this (degrees, per axis) are treated as data gaps
TRACK_GAP_THRESHOLD_DEG = 20.0

AUSTRALIA_BOUNDS = {
    "north": -5.0,
    "south": -45.0,
    "east": 160.0,
    "west": 105.0,
}

SEVERE_CATEGORY = 3


# ============================================================================
# Typed configuration models
# ============================================================================

class ScenarioId(str, Enum):
    """Climate scenarios served by the data API"""
    CURRENT = "current"
    NAT = "nat"
    PLUS_2K = "2k"
    PLUS_4K = "4k"


class SSTModelId(str, Enum):
    """Sea-surface-temperature forcing models for the warming scenarios"""
    CC = "CC"
    GF = "GF"
    HA = "HA"
    MI = "MI"
    MP = "MP"
    MR = "MR"


DEFAULT_SST_MODEL = SSTModelId.CC


class ScenarioConfig(BaseModel):
    """One row of the scenario table"""
    id: ScenarioId
    name: str
    display_name: str
    description: str
    year_min: int
    year_max: int
    ensemble_min: int = Field(1, ge=1)
    ensemble_max: int = Field(..., ge=1)
    ensemble_offset: int = Field(0, ge=0, description="Added to the ensemble id to get the server member number")
    warming: str
    model: str
    color: str
    requires_sst: bool = False
    density_file_pattern: str

    @model_validator(mode="after")
    def check_ranges(self) -> "ScenarioConfig":
        if self.year_min > self.year_max:
            raise ValueError(f"{self.id.value}: year_min {self.year_min} > year_max {self.year_max}")
        if self.ensemble_min > self.ensemble_max:
            raise ValueError(
                f"{self.id.value}: ensemble_min {self.ensemble_min} > ensemble_max {self.ensemble_max}"
            )
        if self.requires_sst and "{sst}" not in self.density_file_pattern:
            raise ValueError(f"{self.id.value}: SST scenario density pattern must contain {{sst}}")
        return self

    @property
    def year_span(self) -> int:
        return self.year_max - self.year_min + 1

    def server_ensemble(self, ensemble_id: int) -> int:
        return self.ensemble_offset + ensemble_id


class SSTModelConfig(BaseModel):
    """Descriptive metadata for an SST model"""
    id: SSTModelId
    name: str
    full_name: str
    description: str


class IntensityCategory(BaseModel):
    """Wind-speed band (km/h) for one intensity category"""
    category: int = Field(..., ge=0, le=5)
    name: str
    min_wind: float = Field(..., ge=0)
    max_wind: float
    color: str
    description: str

    @field_validator("color")
    @classmethod
    def check_color(cls, v: str) -> str:
        if not v.startswith("#") or len(v) != 7:
            raise ValueError(f"Expected #rrggbb colour, got {v!r}")
        return v


# ============================================================================
# Tables
# ============================================================================

SCENARIOS: Dict[ScenarioId, ScenarioConfig] = {
    ScenarioId.CURRENT: ScenarioConfig(
        id=ScenarioId.CURRENT,
        name="Historical (1951-2011)",
        display_name="Historical",
        description="Historical Climate (Past Experiments)",
        year_min=1951,
        year_max=2011,
        ensemble_max=100,
        warming="0K",
        model="d4PDF HPB",
        color="#2c3e50",
        density_file_pattern="density_HPB_m{ensemble}_1951-2011.txt",
    ),
    ScenarioId.NAT: ScenarioConfig(
        id=ScenarioId.NAT,
        name="Natural (1951-2010)",
        display_name="Natural",
        description="Natural Climate (No Anthropogenic Warming)",
        year_min=1951,
        year_max=2010,
        ensemble_max=100,
        warming="Natural Only",
        model="d4PDF HPB NAT",
        color="#27ae60",
        density_file_pattern="density_HPB_NAT_m{ensemble}_1951-2010.txt",
    ),
    ScenarioId.PLUS_2K: ScenarioConfig(
        id=ScenarioId.PLUS_2K,
        name="+2K Warming (2031-2090)",
        display_name="+2K Warming",
        description="+2K Global Warming Scenario",
        year_min=2031,
        year_max=2090,
        ensemble_max=9,
        ensemble_offset=100,
        warming="+2K",
        model="d4PDF HFB_2K",
        color="#e67e22",
        requires_sst=True,
        density_file_pattern="density_HFB_2K_{sst}_m{ensemble}_2031-2090.txt",
    ),
    ScenarioId.PLUS_4K: ScenarioConfig(
        id=ScenarioId.PLUS_4K,
        name="+4K Warming (2051-2110)",
        display_name="+4K Warming",
        description="+4K Global Warming Scenario",
        year_min=2051,
        year_max=2110,
        ensemble_max=15,
        ensemble_offset=100,
        warming="+4K",
        model="d4PDF HFB_4K",
        color="#c0392b",
        requires_sst=True,
        density_file_pattern="density_HFB_4K_{sst}_m{ensemble}_2051-2110.txt",
    ),
}

SST_MODELS: Dict[SSTModelId, SSTModelConfig] = {
    SSTModelId.CC: SSTModelConfig(
        id=SSTModelId.CC, name="CCSM4",
        full_name="Community Climate System Model 4",
        description="NCAR Community Climate System Model",
    ),
    SSTModelId.GF: SSTModelConfig(
        id=SSTModelId.GF, name="GFDL-CM3",
        full_name="Geophysical Fluid Dynamics Laboratory Climate Model 3",
        description="NOAA/GFDL Climate Model",
    ),
    SSTModelId.HA: SSTModelConfig(
        id=SSTModelId.HA, name="HadGEM-AO2",
        full_name="Hadley Centre Global Environmental Model",
        description="UK Met Office Climate Model",
    ),
    SSTModelId.MI: SSTModelConfig(
        id=SSTModelId.MI, name="MIROC5",
        full_name="Model for Interdisciplinary Research on Climate 5",
        description="Japanese Climate Model",
    ),
    SSTModelId.MP: SSTModelConfig(
        id=SSTModelId.MP, name="MPI-ESM-MR",
        full_name="Max Planck Institute Earth System Model",
        description="German Climate Model",
    ),
    SSTModelId.MR: SSTModelConfig(
        id=SSTModelId.MR, name="MRI-CGCM3",
        full_name="Meteorological Research Institute Climate Model 3",
        description="Japanese Meteorological Agency Model",
    ),
}

INTENSITY_CATEGORIES: Dict[int, IntensityCategory] = {
    0: IntensityCategory(category=0, name="Tropical Depression", min_wind=0, max_wind=62,
                         color="#999999", description="Below tropical cyclone intensity"),
    1: IntensityCategory(category=1, name="Category 1", min_wind=63, max_wind=88,
                         color="#1f78b4", description="Typical house roofing damage"),
    2: IntensityCategory(category=2, name="Category 2", min_wind=89, max_wind=117,
                         color="#33a02c", description="Minor structural damage"),
    3: IntensityCategory(category=3, name="Category 3", min_wind=118, max_wind=159,
                         color="#ff7f00", description="Some structural damage"),
    4: IntensityCategory(category=4, name="Category 4", min_wind=160, max_wind=199,
                         color="#e31a1c", description="Significant structural damage"),
    5: IntensityCategory(category=5, name="Category 5", min_wind=200, max_wind=999,
                         color="#6a3d9a", description="Extremely dangerous, widespread destruction"),
}

HEATMAP_LEVELS: Dict[str, List[float]] = {
    "density": [0, 1, 2, 3, 4, 5, 7, 10, 15, 20, 30, 50, 75, 100],
    "precomputed": [0, 1, 2, 5, 10, 20, 40, 80, 120, 160],
}

HEATMAP_COLORS: Dict[str, List[str]] = {
    "density": [
        "rgba(255, 255, 255, 0)",
        "rgba(254, 254, 217, 0.7)",
        "rgba(254, 248, 195, 0.75)",
        "rgba(254, 235, 162, 0.8)",
        "rgba(254, 217, 118, 0.85)",
        "rgba(254, 196, 79, 0.85)",
        "rgba(254, 173, 67, 0.9)",
        "rgba(252, 141, 60, 0.9)",
        "rgba(248, 105, 51, 0.9)",
        "rgba(238, 75, 43, 0.95)",
        "rgba(220, 50, 32, 0.95)",
        "rgba(187, 21, 26, 0.95)",
        "rgba(145, 0, 13, 1)",
        "rgba(103, 0, 13, 1)",
    ],
    "precomputed": [
        "rgba(255, 255, 255, 0)",
        "rgba(255, 255, 220, 0.6)",
        "rgba(255, 255, 178, 0.7)",
        "rgba(255, 237, 160, 0.75)",
        "rgba(255, 200, 100, 0.8)",
        "rgba(255, 150, 50, 0.85)",
        "rgba(255, 100, 0, 0.9)",
        "rgba(255, 50, 0, 0.95)",
        "rgba(200, 0, 0, 0.95)",
        "rgba(139, 0, 0, 1)",
    ],
}

TRANSPARENT = "rgba(255, 255, 255, 0)"

# Lower bound of each density-cell severity bucket, highest first
SEVERITY_BUCKETS = [
    ("severe", 80),
    ("high", 40),
    ("moderate", 10),
    ("low", 1),
]

for _kind, _levels in HEATMAP_LEVELS.items():
    if len(_levels) != len(HEATMAP_COLORS[_kind]):
        raise ValueError(f"Heatmap '{_kind}' has {len(_levels)} levels but {len(HEATMAP_COLORS[_kind])} colours")


# ============================================================================
# Lookup helpers
# ============================================================================

def get_scenario(scenario_id) -> Optional[ScenarioConfig]:
    """Look up a scenario by enum or raw id, returning None if unknown"""
    try:
        return SCENARIOS.get(ScenarioId(scenario_id))
    except ValueError:
        return None


def get_intensity_category(category: int) -> IntensityCategory:
    return INTENSITY_CATEGORIES.get(category, INTENSITY_CATEGORIES[0])


def category_for_wind(wind_kmh: Optional[float]) -> int:
    """
    Map a wind speed in km/h to an intensity category.

    Args:
        wind_kmh: Sustained wind speed, None treated as calm

    Returns:
        Category 0-5
    """
    if wind_kmh is None:
        return 0
    for category in sorted(INTENSITY_CATEGORIES, reverse=True):
        if wind_kmh >= INTENSITY_CATEGORIES[category].min_wind:
            return category
    return 0


def category_color(category: int) -> str:
    return get_intensity_category(category).color


def heatmap_color(value: float, kind: str = "density") -> str:
    """Colour of the highest heatmap level that does not exceed value"""
    levels = HEATMAP_LEVELS.get(kind)
    if levels is None:
        return TRANSPARENT
    colors = HEATMAP_COLORS[kind]
    for i in range(len(levels) - 1, -1, -1):
        if value >= levels[i]:
            return colors[i]
    return colors[0]


def grid_resolution_for(device: str) -> float:
    return DEVICE_GRID_RESOLUTION.get(device, DEFAULT_GRID_RESOLUTION)


def scenario_display_name(scenario_id) -> str:
    scenario = get_scenario(scenario_id)
    if scenario is None:
        return str(scenario_id)
    return scenario.display_name
