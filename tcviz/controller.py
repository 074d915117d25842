"""
Visualization Mode Controller

Owns the AppState, applies mode transitions, and turns the state into a
RenderResult describing what the map should show. UI handlers translate
events into one of the async actions below; each action mutates state
synchronously, then awaits whatever fetching and recomputation it needs.

Every render is tagged with a generation number. A render that finishes
waiting on I/O after a newer one has started is discarded instead of
overwriting the newer result.
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .api.cyclones import CycloneDataManager, CycloneDataset
from .config import HEATMAP_COLORS, HEATMAP_LEVELS, category_color, grid_resolution_for, heatmap_color
from .errors import DataFetchFailure, DensityResourceUnavailable, ModeUnavailable, StaleResultDiscarded
from .export import (
    comparison_filename,
    comparison_to_csv,
    comparison_to_geojson,
    cyclones_to_csv,
    cyclones_to_geojson,
    export_filename,
    track_points_to_csv,
)
from .models import Cyclone, GridCell
from .notifications import Notifier
from .processing.density import DensityGrid, GridAggregator
from .processing.metrics import (
    CycloneMetrics,
    DensityMetrics,
    annual_average,
    calculate_cyclone_metrics,
    calculate_density_metrics,
)
from .state import AppState, Layer, ScenarioSelection, ScenarioState, VisualizationMode, YearRange

logger = logging.getLogger(__name__)


class LoadingIndicator:
    """Loading overlay flag; stays active while any holder is inside hold()"""

    def __init__(self):
        self._holders = 0
        self.message = ""

    @property
    def active(self) -> bool:
        return self._holders > 0

    @contextmanager
    def hold(self, message: str = "Loading cyclone data..."):
        self._holders += 1
        self.message = message
        try:
            yield self
        finally:
            self._holders -= 1
            if self._holders == 0:
                self.message = ""


@dataclass
class SideRender:
    """What one comparison side shows"""
    label: str
    selection: ScenarioSelection
    visible: bool
    year_range: Optional[YearRange] = None
    cyclones: List[Cyclone] = field(default_factory=list)
    total_cyclones: int = 0
    metrics: CycloneMetrics = field(default_factory=CycloneMetrics)


@dataclass
class RenderResult:
    """Everything the map view needs for one render"""
    generation: int
    mode: VisualizationMode
    selection: ScenarioSelection
    layers: Tuple[Layer, ...] = ()
    cyclones: List[Cyclone] = field(default_factory=list)
    total_cyclones: int = 0
    cyclone_metrics: Optional[CycloneMetrics] = None
    annual_average: float = 0.0
    density_grid: Optional[DensityGrid] = None
    cells: List[GridCell] = field(default_factory=list)
    density_metrics: Optional[DensityMetrics] = None
    sides: Dict[str, SideRender] = field(default_factory=dict)
    year_display: str = ""
    # Fill colour of each entry in cells, in the same order
    cell_colors: List[str] = field(default_factory=list)
    # (lower bound, colour) per heatmap level, lowest first
    legend: List[Tuple[float, str]] = field(default_factory=list)
    # Cyclone id -> colour of its peak intensity category
    track_colors: Dict[str, str] = field(default_factory=dict)


class VisualizationModeController:
    """
    State machine over the display modes.

    Initial state: tracks and genesis visible, intensity off, no heatmap,
    not comparing.
    """

    def __init__(self, data_manager: Optional[CycloneDataManager] = None,
                 state: Optional[AppState] = None,
                 notifier: Optional[Notifier] = None,
                 grid_resolution: Optional[float] = None,
                 device: str = "desktop"):
        """
        Args:
            data_manager: Source of cyclone datasets and precomputed density grids
            state: Initial application state (defaults to the initial view)
            notifier: Sink for user-visible messages
            grid_resolution: Density grid cell size in degrees; overrides device
            device: "desktop", "tablet" or "mobile", picks the default grid resolution
        """
        if grid_resolution is None:
            grid_resolution = grid_resolution_for(device)
        self.data_manager = data_manager or CycloneDataManager()
        self.state = state or AppState()
        self.notifier = notifier or Notifier()
        self.aggregator = GridAggregator(grid_resolution)
        self.loading = LoadingIndicator()
        self.rendered: Optional[RenderResult] = None
        self._generation = 0
        self._fetches: Dict[str, asyncio.Future] = {}

    # ------------------------------------------------------------------
    # Mode transitions (synchronous)
    # ------------------------------------------------------------------

    def set_layer(self, layer, enabled: bool) -> None:
        """
        Toggle the tracks / genesis / intensity layer.

        Enabling a layer while a heatmap is shown turns the heatmap off and
        gives the year controls back.
        """
        layer = Layer(layer)
        state = self.state
        if enabled and state.heatmap_active:
            logger.info(f"Enabling {layer.value} layer, leaving {state.mode.value} mode")
            state.severity_heatmap = False
            state.density_heatmap = False
            state.single.enable_year_controls()
        setattr(state, f"show_{layer.value}", bool(enabled))

    def set_severity_heatmap(self, enabled: bool) -> None:
        self._set_heatmap(VisualizationMode.SEVERITY_HEATMAP, enabled)

    def set_density_heatmap(self, enabled: bool) -> None:
        self._set_heatmap(VisualizationMode.DENSITY_HEATMAP, enabled)

    def _set_heatmap(self, mode: VisualizationMode, enabled: bool) -> None:
        state = self.state
        if state.comparison_mode:
            if enabled:
                logger.warning(f"Rejected {mode.value}: heatmaps are unavailable in comparison mode")
                raise ModeUnavailable("Heatmap modes are not available in comparison mode")
            return

        if mode == VisualizationMode.SEVERITY_HEATMAP:
            state.severity_heatmap = bool(enabled)
            if enabled:
                state.density_heatmap = False
        else:
            state.density_heatmap = bool(enabled)
            if enabled:
                state.severity_heatmap = False

        if enabled:
            state.single.disable_year_controls()
        elif not state.heatmap_active:
            state.single.enable_year_controls()

    def enter_comparison(self) -> bool:
        return self.state.enter_comparison_mode()

    def exit_comparison(self) -> bool:
        return self.state.exit_comparison_mode()

    def year_display(self) -> str:
        return self.state.single.year_display(self.state.mode)

    # ------------------------------------------------------------------
    # Actions (state change + reaction)
    # ------------------------------------------------------------------

    async def change_scenario(self, scenario_id) -> Optional[RenderResult]:
        if not self.state.single.set_scenario(scenario_id):
            return self.rendered
        return await self.reload()

    async def change_ensemble(self, ensemble_id: int) -> Optional[RenderResult]:
        if not self.state.single.set_ensemble(ensemble_id):
            return self.rendered
        return await self.reload()

    async def change_sst(self, sst_model) -> Optional[RenderResult]:
        if not self.state.single.set_sst(sst_model):
            return self.rendered
        return await self.reload()

    async def update_year_range(self, year_min: int, year_max: int,
                                changed: Optional[str] = None) -> Optional[RenderResult]:
        if not self.state.single.set_year_range(year_min, year_max, changed):
            return self.rendered
        return await self.refresh()

    async def toggle_layer(self, layer, enabled: bool) -> Optional[RenderResult]:
        self.set_layer(layer, enabled)
        return await self.refresh()

    async def toggle_heatmap(self, mode, enabled: bool) -> Optional[RenderResult]:
        """Toggle one of the heatmap modes; raises ModeUnavailable in comparison mode"""
        mode = VisualizationMode(mode)
        if mode == VisualizationMode.SEVERITY_HEATMAP:
            self.set_severity_heatmap(enabled)
        elif mode == VisualizationMode.DENSITY_HEATMAP:
            self.set_density_heatmap(enabled)
        else:
            raise ValueError(f"{mode.value} is not a heatmap mode")
        return await self.refresh()

    async def set_comparison_mode(self, enabled: bool) -> Optional[RenderResult]:
        changed = self.enter_comparison() if enabled else self.exit_comparison()
        if not changed:
            return self.rendered
        return await self.refresh()

    async def change_side_scenario(self, label: str, scenario_id) -> Optional[RenderResult]:
        return await self._side_action(label, lambda s: s.set_scenario(scenario_id))

    async def change_side_ensemble(self, label: str, ensemble_id: int) -> Optional[RenderResult]:
        return await self._side_action(label, lambda s: s.set_ensemble(ensemble_id))

    async def change_side_sst(self, label: str, sst_model) -> Optional[RenderResult]:
        return await self._side_action(label, lambda s: s.set_sst(sst_model))

    async def update_side_year_range(self, label: str, year_min: int, year_max: int,
                                     changed: Optional[str] = None) -> Optional[RenderResult]:
        return await self._side_action(label, lambda s: s.set_year_range(year_min, year_max, changed))

    async def set_side_visible(self, label: str, visible: bool) -> Optional[RenderResult]:
        side = self.state.side(label)
        if side.visible == visible:
            return self.rendered
        side.visible = visible
        return await self._refresh_if_comparing()

    async def _side_action(self, label: str, mutate) -> Optional[RenderResult]:
        side = self.state.side(label)
        if not mutate(side.state):
            return self.rendered
        return await self._refresh_if_comparing()

    async def _refresh_if_comparing(self) -> Optional[RenderResult]:
        if not self.state.comparison_mode:
            return self.rendered
        return await self.refresh()

    async def reload(self, force_refresh: bool = False) -> Optional[RenderResult]:
        """Fetch the single-view dataset (unless cached) and re-render"""
        if self.state.comparison_mode:
            return await self.refresh()
        selection = self.state.single.selection
        with self.loading.hold("Loading cyclone data..."):
            try:
                dataset = await self.data_manager.load_data(selection, force_refresh=force_refresh)
            except DataFetchFailure as e:
                self._report_fetch_failure(selection, e)
                return None
        if dataset is None:
            # Another caller is already loading this key and will render it
            return None
        return await self.refresh()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    async def refresh(self) -> Optional[RenderResult]:
        """
        Recompute what to show for the current state.

        Returns:
            The new RenderResult, or None if nothing was rendered (data not
            available, fetch failed, or superseded by a newer render)
        """
        self._generation += 1
        generation = self._generation
        mode = self.state.mode

        try:
            if mode == VisualizationMode.COMPARISON:
                result = await self._render_comparison(generation)
            elif mode == VisualizationMode.SEVERITY_HEATMAP:
                result = await self._render_severity_heatmap(generation)
            elif mode == VisualizationMode.DENSITY_HEATMAP:
                result = await self._render_density_heatmap(generation)
            else:
                result = await self._render_standard(generation)
            if result is None:
                return None
            self._check_current(generation, mode)
        except StaleResultDiscarded as e:
            logger.debug(f"Discarded stale render: {e}")
            return None

        self.rendered = result
        logger.info(f"Rendered #{generation} in {mode.value} mode: "
                    f"{len(result.cyclones)} cyclones, {len(result.cells)} cells")
        return result

    def _check_current(self, generation: int, mode: VisualizationMode) -> None:
        if generation != self._generation or self.state.mode != mode:
            raise StaleResultDiscarded(generation, self._generation)

    async def _dataset(self, selection: ScenarioSelection, generation: int,
                       mode: VisualizationMode) -> Optional[CycloneDataset]:
        cached = self.data_manager.get_cached(selection)
        if cached is not None:
            return cached

        # One fetch per key; every render waiting on that key awaits it
        key = selection.cache_key
        fetch = self._fetches.get(key)
        if fetch is None:
            fetch = asyncio.ensure_future(self.data_manager.load_data(selection))
            self._fetches[key] = fetch
            fetch.add_done_callback(lambda done: self._forget_fetch(key, done))

        with self.loading.hold("Loading cyclone data..."):
            try:
                dataset = await asyncio.shield(fetch)
            except DataFetchFailure as e:
                self._check_current(generation, mode)
                self._report_fetch_failure(selection, e)
                dataset = None
        self._check_current(generation, mode)
        return dataset

    def _forget_fetch(self, key: str, fetch: asyncio.Future) -> None:
        if self._fetches.get(key) is fetch:
            del self._fetches[key]

    def _report_fetch_failure(self, selection: ScenarioSelection, error: Exception) -> None:
        logger.error(f"Error loading data for {selection.cache_key}: {error}")
        self.notifier.error("Failed to load cyclone data. Please try again.")

    def _base_result(self, generation: int, mode: VisualizationMode) -> RenderResult:
        single = self.state.single
        return RenderResult(
            generation=generation,
            mode=mode,
            selection=single.selection,
            year_display=single.year_display(mode),
        )

    async def _render_standard(self, generation: int) -> Optional[RenderResult]:
        mode = VisualizationMode.STANDARD
        single = self.state.single
        dataset = await self._dataset(single.selection, generation, mode)
        if dataset is None:
            return None

        cyclones = single.filter(dataset.cyclones)
        year_range = single.year_range
        result = self._base_result(generation, mode)
        result.layers = self.state.enabled_layers()
        result.cyclones = cyclones
        result.total_cyclones = len(dataset.cyclones)
        result.cyclone_metrics = calculate_cyclone_metrics(cyclones)
        result.annual_average = annual_average(
            len(cyclones), single.scenario,
            year_range.min if year_range else None,
            year_range.max if year_range else None,
        )
        result.track_colors = {c.id: category_color(c.max_category) for c in cyclones}
        return result

    async def _render_density_heatmap(self, generation: int) -> Optional[RenderResult]:
        mode = VisualizationMode.DENSITY_HEATMAP
        dataset = await self._dataset(self.state.single.selection, generation, mode)
        if dataset is None:
            return None

        # Density mode always covers every year of the scenario
        grid = self.aggregator.aggregate(dataset.cyclones)
        result = self._base_result(generation, mode)
        result.cyclones = list(dataset.cyclones)
        result.total_cyclones = len(dataset.cyclones)
        result.density_grid = grid
        result.cells = grid.to_cells()
        result.density_metrics = calculate_density_metrics(grid)
        self._color_cells(result, "density")
        logger.info(f"Density heatmap created: {grid.active_cells} active cells")
        return result

    async def _render_severity_heatmap(self, generation: int) -> Optional[RenderResult]:
        mode = VisualizationMode.SEVERITY_HEATMAP
        selection = self.state.single.selection

        with self.loading.hold("Loading pre-computed density heatmap..."):
            try:
                cells = await self.data_manager.fetch_precomputed_density(selection)
            except DensityResourceUnavailable as e:
                self._check_current(generation, mode)
                logger.warning(f"No precomputed density for {selection.cache_key}: {e}")
                self.notifier.warning(self._density_unavailable_message(selection))
                cells = []
        self._check_current(generation, mode)

        active = [cell for cell in cells if cell.count > 0]
        result = self._base_result(generation, mode)
        result.cells = active
        result.density_metrics = calculate_density_metrics(active)
        self._color_cells(result, "precomputed")
        return result

    @staticmethod
    def _color_cells(result: RenderResult, kind: str) -> None:
        result.cell_colors = [heatmap_color(cell.count, kind) for cell in result.cells]
        result.legend = list(zip(HEATMAP_LEVELS[kind], HEATMAP_COLORS[kind]))

    @staticmethod
    def _density_unavailable_message(selection: ScenarioSelection) -> str:
        message = (f"Could not load pre-computed density data for {selection.scenario_id.value} "
                   f"scenario, ensemble {selection.ensemble_id}")
        if selection.sst_model is not None:
            message += f", SST model {selection.sst_model.value}"
        return message + "."

    async def _render_comparison(self, generation: int) -> Optional[RenderResult]:
        mode = VisualizationMode.COMPARISON
        sides = self.state.sides
        for side in sides.values():
            side.state.ensure_year_controls()

        # One fetch per distinct key, so both sides may show the same run
        wanted: Dict[str, ScenarioSelection] = {}
        for side in sides.values():
            if side.visible:
                selection = side.state.selection
                wanted.setdefault(selection.cache_key, selection)
        keys = list(wanted)
        datasets = await asyncio.gather(
            *(self._dataset(wanted[key], generation, mode) for key in keys)
        )
        by_key = dict(zip(keys, datasets))

        result = self._base_result(generation, mode)
        for label, side in sides.items():
            scenario_state: ScenarioState = side.state
            render = SideRender(
                label=label,
                selection=scenario_state.selection,
                visible=side.visible,
                year_range=scenario_state.year_range,
            )
            dataset = by_key.get(scenario_state.selection.cache_key) if side.visible else None
            if dataset is not None:
                render.cyclones = scenario_state.filter(dataset.cyclones)
                render.total_cyclones = len(dataset.cyclones)
                render.metrics = calculate_cyclone_metrics(render.cyclones)
            result.sides[label] = render
        return result

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def _displayed_cyclones(self, scenario_state: ScenarioState) -> List[Cyclone]:
        dataset = self.data_manager.get_cached(scenario_state.selection)
        if dataset is None:
            return []
        return scenario_state.filter(dataset.cyclones)

    def export_csv(self) -> Tuple[str, str]:
        """(file name, CSV text) for the single view's displayed cyclones"""
        single = self.state.single
        cyclones = self._displayed_cyclones(single)
        text = cyclones_to_csv(cyclones)
        logger.info(f"Exported {len(cyclones)} cyclones to CSV")
        return export_filename(single.selection, single.year_range), text

    def export_track_points(self) -> Tuple[str, str]:
        single = self.state.single
        cyclones = self._displayed_cyclones(single)
        name = export_filename(single.selection, prefix="cyclone_tracks")
        return name, track_points_to_csv(cyclones)

    def export_geojson(self) -> Tuple[str, str]:
        single = self.state.single
        cyclones = self._displayed_cyclones(single)
        name = export_filename(single.selection, prefix="cyclone_tracks", extension="geojson")
        return name, cyclones_to_geojson(cyclones, single.selection)

    def export_comparison_csv(self) -> Tuple[str, str]:
        a, b = self.state.side("A").state, self.state.side("B").state
        text = comparison_to_csv(self._displayed_cyclones(a), self._displayed_cyclones(b),
                                 a.selection, b.selection)
        return comparison_filename(a.selection, b.selection), text

    def export_comparison_geojson(self) -> Tuple[str, str]:
        a, b = self.state.side("A").state, self.state.side("B").state
        text = comparison_to_geojson(self._displayed_cyclones(a), self._displayed_cyclones(b),
                                     a.selection, b.selection)
        return comparison_filename(a.selection, b.selection, extension="geojson"), text
