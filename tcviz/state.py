"""
Application State

The single source of truth for what is on screen: which scenario / ensemble /
SST model is selected, which years are shown, which layers and heatmaps are
enabled and whether the A/B comparison view is active.

All mutations go through named methods that validate their input and either
apply completely or raise, leaving the previous state intact. Nothing in
this module performs I/O; fetching and rendering are reactions driven by
the controller.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence

from .config import (
    DEFAULT_SST_MODEL,
    SCENARIOS,
    ScenarioConfig,
    ScenarioId,
    SSTModelId,
)
from .errors import InvalidScenario, InvalidSSTModel, OutOfRangeEnsemble
from .models import Cyclone
from .processing.filters import filter_cyclones

logger = logging.getLogger(__name__)


class VisualizationMode(str, Enum):
    """Mutually exclusive rendering paths"""
    STANDARD = "tracks"
    SEVERITY_HEATMAP = "severity_heatmap"
    DENSITY_HEATMAP = "density_heatmap"
    COMPARISON = "comparison"


class Layer(str, Enum):
    """Independently togglable layers of the standard view"""
    TRACKS = "tracks"
    GENESIS = "genesis"
    INTENSITY = "intensity"


MODE_LABELS = {
    VisualizationMode.SEVERITY_HEATMAP: "Severity Mode",
    VisualizationMode.DENSITY_HEATMAP: "Density Mode",
    VisualizationMode.COMPARISON: "Comparison Mode",
}


@dataclass(frozen=True)
class YearRange:
    """Inclusive range of years"""
    min: int
    max: int

    def __post_init__(self):
        if self.min > self.max:
            raise ValueError(f"YearRange min {self.min} > max {self.max}")

    def contains(self, year: int) -> bool:
        return self.min <= year <= self.max

    @property
    def is_single_year(self) -> bool:
        return self.min == self.max

    @property
    def span(self) -> int:
        return self.max - self.min + 1


@dataclass(frozen=True)
class ScenarioSelection:
    """Scenario, ensemble member and (for warming runs) SST model"""
    scenario_id: ScenarioId
    ensemble_id: int
    sst_model: Optional[SSTModelId] = None

    @property
    def scenario(self) -> ScenarioConfig:
        return SCENARIOS[self.scenario_id]

    @property
    def cache_key(self) -> str:
        key = f"{self.scenario_id.value}_{self.ensemble_id}"
        if self.sst_model is not None:
            key += f"_{self.sst_model.value}"
        return key


class ScenarioState:
    """
    Selection and year filter for one view (the single view or one side of
    the comparison).

    The year range is stored as the position of the range controls; the
    effective filter (``year_range``) is None whenever the controls span the
    scenario's full bounds, which means "no year filtering".
    """

    def __init__(self,
                 scenario_id=ScenarioId.CURRENT,
                 ensemble_id: int = 1,
                 sst_model=DEFAULT_SST_MODEL,
                 scenarios: Dict[ScenarioId, ScenarioConfig] = SCENARIOS,
                 lazy_year_controls: bool = False):
        """
        Args:
            scenario_id: Initial scenario
            ensemble_id: Initial ensemble member
            sst_model: Initial SST model (kept for SST scenarios only)
            scenarios: Scenario table to validate against
            lazy_year_controls: Leave the year controls uninitialized until first render
        """
        self._scenarios = scenarios
        config = self._lookup(scenario_id)
        self._check_ensemble(config, ensemble_id)
        self._scenario_id = config.id
        self._ensemble_id = ensemble_id
        self._sst_model = self._parse_sst(sst_model) if sst_model is not None else DEFAULT_SST_MODEL
        self._controls: Optional[YearRange] = None if lazy_year_controls else self.bounds
        self._last_changed: Optional[str] = None
        self.controls_enabled = True

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def scenario(self) -> ScenarioConfig:
        return self._scenarios[self._scenario_id]

    @property
    def scenario_id(self) -> ScenarioId:
        return self._scenario_id

    @property
    def ensemble_id(self) -> int:
        return self._ensemble_id

    @property
    def sst_model(self) -> Optional[SSTModelId]:
        """Active SST model, None for scenarios that do not use one"""
        return self._sst_model if self.scenario.requires_sst else None

    @property
    def selection(self) -> ScenarioSelection:
        return ScenarioSelection(self._scenario_id, self._ensemble_id, self.sst_model)

    @property
    def bounds(self) -> YearRange:
        config = self.scenario
        return YearRange(config.year_min, config.year_max)

    @property
    def year_controls(self) -> Optional[YearRange]:
        """Current position of the year controls (None until initialized)"""
        return self._controls

    @property
    def year_range(self) -> Optional[YearRange]:
        """Effective year filter; None means the full scenario range"""
        if self._controls is None or self._controls == self.bounds:
            return None
        return self._controls

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_scenario(self, scenario_id) -> bool:
        """
        Switch scenario.

        Resets the ensemble to 1 when it is outside the new scenario's range
        and resets the year controls to the new scenario's full bounds.

        Returns:
            True if the scenario changed

        Raises:
            InvalidScenario: If the id is not in the scenario table
        """
        config = self._lookup(scenario_id)
        if config.id == self._scenario_id:
            return False

        ensemble_id = self._ensemble_id
        if not (config.ensemble_min <= ensemble_id <= config.ensemble_max):
            logger.info(f"Ensemble {ensemble_id} not available for '{config.id.value}', resetting to 1")
            ensemble_id = 1

        self._scenario_id = config.id
        self._ensemble_id = ensemble_id
        self._controls = self.bounds
        self._last_changed = None
        return True

    def set_ensemble(self, ensemble_id: int) -> bool:
        """
        Select an ensemble member of the current scenario.

        Raises:
            OutOfRangeEnsemble: If outside the scenario's ensemble range
        """
        self._check_ensemble(self.scenario, ensemble_id)
        if ensemble_id == self._ensemble_id:
            return False
        self._ensemble_id = ensemble_id
        return True

    def set_sst(self, sst_model) -> bool:
        """
        Select the SST model. Ignored for scenarios that do not use one.

        Raises:
            InvalidSSTModel: If the scenario needs an SST model and this one is unknown
        """
        if not self.scenario.requires_sst:
            logger.debug(f"Ignoring SST model {sst_model!r} for scenario '{self._scenario_id.value}'")
            return False
        model = self._parse_sst(sst_model)
        if model == self._sst_model:
            return False
        self._sst_model = model
        return True

    def set_year_range(self, year_min: int, year_max: int, changed: Optional[str] = None) -> bool:
        """
        Move the year controls.

        Both ends are clamped to the scenario bounds. If they cross, the end
        that was not changed most recently snaps to the other one. ``changed``
        names the end the user just moved ('min' or 'max'); when omitted it
        is inferred from which end differs from the current controls.

        Returns:
            False if the controls are disabled (heatmap / comparison mode)
        """
        if not self.controls_enabled:
            logger.debug("Year controls disabled, ignoring year range change")
            return False
        if changed not in (None, "min", "max"):
            raise ValueError(f"changed must be 'min' or 'max', got {changed!r}")

        bounds = self.bounds
        year_min = max(bounds.min, min(bounds.max, int(year_min)))
        year_max = max(bounds.min, min(bounds.max, int(year_max)))

        if changed is None:
            changed = self._infer_changed(year_min, year_max)
        if changed is not None:
            self._last_changed = changed

        if year_min > year_max:
            if self._last_changed == "min":
                year_max = year_min
            else:
                year_min = year_max

        self._controls = YearRange(year_min, year_max)
        return True

    def set_year_min(self, year_min: int) -> bool:
        current = self._controls or self.bounds
        return self.set_year_range(year_min, current.max, changed="min")

    def set_year_max(self, year_max: int) -> bool:
        current = self._controls or self.bounds
        return self.set_year_range(current.min, year_max, changed="max")

    def reset_year_range(self) -> None:
        self._controls = self.bounds
        self._last_changed = None

    def ensure_year_controls(self) -> YearRange:
        """Initialize lazily created year controls to the full bounds"""
        if self._controls is None:
            self._controls = self.bounds
        return self._controls

    def disable_year_controls(self) -> None:
        """Force full-range display and make the controls inert"""
        self.reset_year_range()
        self.controls_enabled = False

    def enable_year_controls(self) -> None:
        self.controls_enabled = True

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def filter(self, cyclones: Sequence[Cyclone]):
        return filter_cyclones(cyclones, year_range=self.year_range)

    def year_display(self, mode: VisualizationMode = VisualizationMode.STANDARD) -> str:
        """Text shown next to the year controls"""
        if mode in (VisualizationMode.SEVERITY_HEATMAP, VisualizationMode.DENSITY_HEATMAP):
            return f"All Years ({MODE_LABELS[mode]})"
        controls = self._controls or self.bounds
        if controls == self.bounds:
            return f"{controls.min} - {controls.max}"
        if controls.is_single_year:
            return f"Year: {controls.min}"
        return f"{controls.min} - {controls.max}"

    def to_dict(self) -> Dict:
        year_range = self.year_range
        return {
            "scenario": self._scenario_id.value,
            "ensemble": self._ensemble_id,
            "sstModel": self.sst_model.value if self.sst_model else None,
            "yearRange": {"min": year_range.min, "max": year_range.max} if year_range else None,
            "yearControlsEnabled": self.controls_enabled,
        }

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _lookup(self, scenario_id) -> ScenarioConfig:
        try:
            key = ScenarioId(scenario_id)
        except ValueError:
            raise InvalidScenario(scenario_id) from None
        config = self._scenarios.get(key)
        if config is None:
            raise InvalidScenario(scenario_id)
        return config

    @staticmethod
    def _check_ensemble(config: ScenarioConfig, ensemble_id) -> None:
        if isinstance(ensemble_id, bool) or not isinstance(ensemble_id, int):
            raise OutOfRangeEnsemble(config.id.value, ensemble_id, config.ensemble_min, config.ensemble_max)
        if not (config.ensemble_min <= ensemble_id <= config.ensemble_max):
            raise OutOfRangeEnsemble(config.id.value, ensemble_id, config.ensemble_min, config.ensemble_max)

    @staticmethod
    def _parse_sst(sst_model) -> SSTModelId:
        try:
            return SSTModelId(sst_model)
        except ValueError:
            raise InvalidSSTModel(sst_model) from None

    def _infer_changed(self, year_min: int, year_max: int) -> Optional[str]:
        current = self._controls or self.bounds
        min_moved = year_min != current.min
        max_moved = year_max != current.max
        if min_moved and not max_moved:
            return "min"
        if max_moved and not min_moved:
            return "max"
        return None


@dataclass
class ComparisonSide:
    """One side (A or B) of the comparison view"""
    state: ScenarioState
    visible: bool = True


def _default_sides() -> Dict[str, ComparisonSide]:
    return {
        "A": ComparisonSide(ScenarioState(ScenarioId.CURRENT, lazy_year_controls=True)),
        "B": ComparisonSide(ScenarioState(ScenarioId.PLUS_2K, lazy_year_controls=True)),
    }


@dataclass
class AppState:
    """
    Everything the view depends on.

    Severity heatmap, density heatmap and comparison are mutually exclusive.
    The track / genesis / intensity flags only matter in the standard view.
    """
    single: ScenarioState = field(default_factory=ScenarioState)
    sides: Dict[str, ComparisonSide] = field(default_factory=_default_sides)
    comparison_mode: bool = False
    show_tracks: bool = True
    show_genesis: bool = True
    show_intensity: bool = False
    severity_heatmap: bool = False
    density_heatmap: bool = False

    @property
    def mode(self) -> VisualizationMode:
        if self.comparison_mode:
            return VisualizationMode.COMPARISON
        if self.density_heatmap:
            return VisualizationMode.DENSITY_HEATMAP
        if self.severity_heatmap:
            return VisualizationMode.SEVERITY_HEATMAP
        return VisualizationMode.STANDARD

    @property
    def heatmap_active(self) -> bool:
        return self.severity_heatmap or self.density_heatmap

    def layer_enabled(self, layer: Layer) -> bool:
        return getattr(self, f"show_{Layer(layer).value}")

    def enabled_layers(self):
        return tuple(layer for layer in Layer if self.layer_enabled(layer))

    def side(self, label: str) -> ComparisonSide:
        try:
            return self.sides[label]
        except KeyError:
            raise ValueError(f"Unknown comparison side {label!r}") from None

    def enter_comparison_mode(self) -> bool:
        """
        Switch to the A/B view. Turns heatmaps off and makes the single-view
        year controls inert. Idempotent.
        """
        if self.comparison_mode:
            return False
        self.severity_heatmap = False
        self.density_heatmap = False
        self.single.disable_year_controls()
        self.comparison_mode = True
        return True

    def exit_comparison_mode(self) -> bool:
        """Return to the single view with its year controls enabled. Idempotent."""
        if not self.comparison_mode:
            return False
        self.comparison_mode = False
        self.single.enable_year_controls()
        return True

    def to_dict(self) -> Dict:
        return {
            "single": self.single.to_dict(),
            "comparison": {
                label: {**side.state.to_dict(), "visible": side.visible}
                for label, side in self.sides.items()
            },
            "mode": self.mode.value,
            "layers": [layer.value for layer in self.enabled_layers()],
        }
