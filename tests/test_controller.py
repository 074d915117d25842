"""Tests for the visualization mode controller."""

import asyncio
import csv
import io

import pytest

from conftest import FakeDataManager, make_grid_cell
from tcviz.config import HEATMAP_LEVELS, heatmap_color
from tcviz.controller import LoadingIndicator, VisualizationModeController
from tcviz.errors import ModeUnavailable
from tcviz.state import Layer, VisualizationMode, YearRange


def _controller(manager):
    return VisualizationModeController(data_manager=manager)


class TestLoadingIndicator:
    def test_nested_holds(self):
        loading = LoadingIndicator()
        assert not loading.active
        with loading.hold("outer"):
            with loading.hold("inner"):
                assert loading.active
            assert loading.active
        assert not loading.active
        assert loading.message == ""

    def test_released_on_error(self):
        loading = LoadingIndicator()
        with pytest.raises(RuntimeError):
            with loading.hold():
                raise RuntimeError("fetch failed")
        assert not loading.active


class TestModeTransitions:
    def test_heatmaps_mutually_exclusive(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.set_severity_heatmap(True)
        ctrl.set_density_heatmap(True)
        assert ctrl.state.density_heatmap
        assert not ctrl.state.severity_heatmap
        assert ctrl.state.mode == VisualizationMode.DENSITY_HEATMAP

        ctrl.set_severity_heatmap(True)
        assert ctrl.state.severity_heatmap
        assert not ctrl.state.density_heatmap

    def test_heatmap_disables_year_controls(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.state.single.set_year_range(1960, 1965)
        ctrl.set_density_heatmap(True)
        assert ctrl.state.single.year_range is None
        assert not ctrl.state.single.controls_enabled
        assert ctrl.year_display() == "All Years (Density Mode)"

        ctrl.set_density_heatmap(False)
        assert ctrl.state.single.controls_enabled
        assert ctrl.state.mode == VisualizationMode.STANDARD

    def test_heatmap_unavailable_in_comparison(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.enter_comparison()
        with pytest.raises(ModeUnavailable):
            ctrl.set_density_heatmap(True)
        with pytest.raises(ModeUnavailable):
            ctrl.set_severity_heatmap(True)
        assert ctrl.state.mode == VisualizationMode.COMPARISON
        assert not ctrl.state.heatmap_active

    def test_enabling_layer_leaves_heatmap(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.set_severity_heatmap(True)
        ctrl.set_layer(Layer.INTENSITY, True)
        assert not ctrl.state.heatmap_active
        assert ctrl.state.show_intensity
        assert ctrl.state.single.controls_enabled

    def test_disabling_layer_keeps_heatmap(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.set_density_heatmap(True)
        ctrl.set_layer("tracks", False)
        assert ctrl.state.density_heatmap
        assert not ctrl.state.show_tracks


class TestRendering:
    def test_standard_render(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.state.single.set_year_range(1960, 1964)
        result = asyncio.run(ctrl.refresh())

        assert result is ctrl.rendered
        assert result.mode == VisualizationMode.STANDARD
        assert result.layers == (Layer.TRACKS, Layer.GENESIS)
        assert [c.year for c in result.cyclones] == [1960, 1961, 1962, 1963, 1964]
        assert result.total_cyclones == 10
        assert result.cyclone_metrics.total_cyclones == 5
        assert result.annual_average == 1.0
        assert result.year_display == "1960 - 1964"
        assert not ctrl.loading.active

    def test_density_heatmap_uses_all_years(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.state.single.set_year_range(1960, 1961)
        ctrl.set_density_heatmap(True)
        result = asyncio.run(ctrl.refresh())

        assert result.mode == VisualizationMode.DENSITY_HEATMAP
        assert len(result.cyclones) == 10
        assert result.density_grid.active_cells > 0
        assert len(result.cells) == result.density_grid.active_cells
        assert result.density_metrics.active_cells == result.density_grid.active_cells

    def test_severity_heatmap_uses_precomputed_cells(self, fake_manager):
        fake_manager.density["current_1"] = [make_grid_cell(1, 1, 5), make_grid_cell(2, 1, 0)]
        ctrl = _controller(fake_manager)
        ctrl.set_severity_heatmap(True)
        result = asyncio.run(ctrl.refresh())

        assert [c.count for c in result.cells] == [5]
        assert result.density_grid is None
        assert result.density_metrics.max_count == 5
        assert fake_manager.load_calls == []

    def test_standard_render_colors_tracks_by_peak_category(self, fake_manager):
        ctrl = _controller(fake_manager)
        result = asyncio.run(ctrl.refresh())

        assert result.track_colors["TC0000"] == "#1f78b4"
        assert result.track_colors["TC0004"] == "#e31a1c"
        assert result.track_colors["TC0007"] == "#6a3d9a"
        assert len(result.track_colors) == 10
        assert result.cell_colors == []

    def test_density_cells_colored_by_count(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.set_density_heatmap(True)
        result = asyncio.run(ctrl.refresh())

        assert len(result.cell_colors) == len(result.cells)
        for cell, color in zip(result.cells, result.cell_colors):
            assert color == heatmap_color(cell.count, "density")
        assert result.legend[0] == (0, "rgba(255, 255, 255, 0)")
        assert result.legend[-1] == (100, "rgba(103, 0, 13, 1)")
        assert len(result.legend) == len(HEATMAP_LEVELS["density"])

    def test_severity_cells_use_precomputed_palette(self, fake_manager):
        fake_manager.density["current_1"] = [make_grid_cell(1, 1, 5), make_grid_cell(3, 1, 200)]
        ctrl = _controller(fake_manager)
        ctrl.set_severity_heatmap(True)
        result = asyncio.run(ctrl.refresh())

        assert result.cell_colors == ["rgba(255, 237, 160, 0.75)", "rgba(139, 0, 0, 1)"]
        assert [level for level, _ in result.legend] == HEATMAP_LEVELS["precomputed"]

    def test_grid_resolution_follows_device(self, fake_manager):
        assert _controller(fake_manager).aggregator.resolution == 2.0
        mobile = VisualizationModeController(data_manager=fake_manager, device="mobile")
        assert mobile.aggregator.resolution == 4.0
        tablet = VisualizationModeController(data_manager=fake_manager, device="tablet")
        assert tablet.aggregator.resolution == 3.0
        explicit = VisualizationModeController(data_manager=fake_manager, grid_resolution=1.0,
                                               device="mobile")
        assert explicit.aggregator.resolution == 1.0

    def test_missing_density_resource_renders_empty_with_warning(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.set_severity_heatmap(True)
        result = asyncio.run(ctrl.refresh())

        assert result.mode == VisualizationMode.SEVERITY_HEATMAP
        assert result.cells == []
        assert result.density_grid is None
        assert ctrl.state.severity_heatmap
        assert [n.level for n in ctrl.notifier.notifications] == ["warning"]
        assert not ctrl.loading.active

    def test_fetch_failure_keeps_previous_render(self, fake_manager):
        ctrl = _controller(fake_manager)
        first = asyncio.run(ctrl.refresh())

        fake_manager.fail_keys.add("current_2")
        ctrl.state.single.set_ensemble(2)
        assert asyncio.run(ctrl.refresh()) is None

        assert ctrl.rendered is first
        assert ctrl.notifier.notifications[-1].level == "error"
        assert not ctrl.loading.active


class TestStaleResults:
    def test_older_fetch_completing_last_is_discarded(self, ten_cyclones):
        manager = FakeDataManager(datasets={"current_1": ten_cyclones, "current_2": ten_cyclones[:2]})
        ctrl = _controller(manager)

        async def scenario():
            gate = asyncio.get_running_loop().create_future()
            manager.gates["current_1"] = gate
            first = asyncio.create_task(ctrl.refresh())
            await asyncio.sleep(0)
            assert ctrl.loading.active

            ctrl.state.single.set_ensemble(2)
            second = await ctrl.refresh()
            gate.set_result(None)
            return await first, second

        first, second = asyncio.run(scenario())
        assert first is None
        assert ctrl.rendered is second
        assert ctrl.rendered.selection.ensemble_id == 2
        assert len(ctrl.rendered.cyclones) == 2
        assert not ctrl.loading.active

    def test_stale_heatmap_build_is_discarded(self, fake_manager):
        fake_manager.density["current_1"] = [make_grid_cell(1, 1, 9)]
        fake_manager.density["current_2"] = [make_grid_cell(5, 5, 3)]
        ctrl = _controller(fake_manager)
        ctrl.set_severity_heatmap(True)

        async def scenario():
            gate = asyncio.get_running_loop().create_future()
            fake_manager.density_gates["current_1"] = gate
            first = asyncio.create_task(ctrl.refresh())
            await asyncio.sleep(0)

            ctrl.state.single.set_ensemble(2)
            second = await ctrl.refresh()
            gate.set_result(None)
            return await first, second

        first, second = asyncio.run(scenario())
        assert first is None
        assert ctrl.rendered is second
        assert [c.count for c in ctrl.rendered.cells] == [3]

    def test_switching_back_shares_pending_fetch(self, ten_cyclones):
        manager = FakeDataManager(datasets={"current_1": ten_cyclones, "current_2": ten_cyclones[:2]})
        ctrl = _controller(manager)

        async def scenario():
            gate = asyncio.get_running_loop().create_future()
            manager.gates["current_1"] = gate
            first = asyncio.create_task(ctrl.refresh())
            await asyncio.sleep(0)

            ctrl.state.single.set_ensemble(2)
            await ctrl.refresh()
            ctrl.state.single.set_ensemble(1)
            third = asyncio.create_task(ctrl.refresh())
            await asyncio.sleep(0)
            gate.set_result(None)
            return await first, await third

        first, third = asyncio.run(scenario())
        assert first is None
        assert ctrl.rendered is third
        assert ctrl.rendered.selection.ensemble_id == 1
        assert manager.load_calls.count("current_1") == 1

    def test_mode_change_discards_pending_render(self, fake_manager):
        ctrl = _controller(fake_manager)

        async def scenario():
            gate = asyncio.get_running_loop().create_future()
            fake_manager.gates["current_1"] = gate
            pending = asyncio.create_task(ctrl.refresh())
            await asyncio.sleep(0)
            ctrl.enter_comparison()
            gate.set_result(None)
            return await pending

        assert asyncio.run(scenario()) is None
        assert ctrl.rendered is None


class TestComparison:
    def test_comparison_render(self, ten_cyclones):
        manager = FakeDataManager(datasets={"current_1": ten_cyclones, "2k_1_CC": ten_cyclones[:4]})
        ctrl = _controller(manager)
        result = asyncio.run(ctrl.set_comparison_mode(True))

        assert result.mode == VisualizationMode.COMPARISON
        assert len(result.sides["A"].cyclones) == 10
        assert len(result.sides["B"].cyclones) == 4
        assert result.sides["B"].metrics.total_cyclones == 4
        assert ctrl.state.side("B").state.year_controls == YearRange(2031, 2090)

    def test_same_selection_fetched_once(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.state.side("B").state.set_scenario("current")
        result = asyncio.run(ctrl.set_comparison_mode(True))

        assert fake_manager.load_calls == ["current_1"]
        assert len(result.sides["A"].cyclones) == len(result.sides["B"].cyclones) == 10

    def test_hidden_side_not_fetched(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.state.side("B").visible = False
        result = asyncio.run(ctrl.set_comparison_mode(True))

        assert fake_manager.load_calls == ["current_1"]
        assert result.sides["B"].cyclones == []

    def test_side_year_range(self, fake_manager):
        ctrl = _controller(fake_manager)
        asyncio.run(ctrl.set_comparison_mode(True))
        result = asyncio.run(ctrl.update_side_year_range("A", 1960, 1962))
        assert [c.year for c in result.sides["A"].cyclones] == [1960, 1961, 1962]

    def test_side_change_outside_comparison_does_not_render(self, fake_manager):
        ctrl = _controller(fake_manager)
        assert asyncio.run(ctrl.change_side_ensemble("B", 3)) is None
        assert ctrl.state.side("B").state.ensemble_id == 3
        assert fake_manager.load_calls == []

    def test_toggle_heatmap_in_comparison_raises(self, fake_manager):
        ctrl = _controller(fake_manager)
        asyncio.run(ctrl.set_comparison_mode(True))
        with pytest.raises(ModeUnavailable):
            asyncio.run(ctrl.toggle_heatmap(VisualizationMode.DENSITY_HEATMAP, True))
        assert ctrl.state.mode == VisualizationMode.COMPARISON


class TestActions:
    def test_change_scenario_loads_new_selection(self, ten_cyclones):
        manager = FakeDataManager(datasets={"2k_1_CC": ten_cyclones[:3]})
        ctrl = _controller(manager)
        result = asyncio.run(ctrl.change_scenario("2k"))

        assert result.selection.cache_key == "2k_1_CC"
        assert len(result.cyclones) == 3
        assert result.year_display == "2031 - 2090"

    def test_unchanged_scenario_does_not_reload(self, fake_manager):
        ctrl = _controller(fake_manager)
        assert asyncio.run(ctrl.change_scenario("current")) is None
        assert fake_manager.load_calls == []

    def test_year_range_ignored_in_heatmap_mode(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.set_density_heatmap(True)
        asyncio.run(ctrl.update_year_range(1960, 1961))
        assert ctrl.state.single.year_range is None

    def test_toggle_layer_rerenders(self, fake_manager):
        ctrl = _controller(fake_manager)
        result = asyncio.run(ctrl.toggle_layer(Layer.INTENSITY, True))
        assert Layer.INTENSITY in result.layers


class TestExport:
    def test_unfiltered_export_has_every_cyclone(self, fake_manager):
        ctrl = _controller(fake_manager)
        asyncio.run(ctrl.refresh())
        filename, text = ctrl.export_csv()

        rows = list(csv.reader(io.StringIO(text)))
        assert len(rows) - 1 == 10
        assert filename.startswith("cyclone_data_current_ensemble1_")
        assert filename.endswith(".csv")

    def test_export_follows_year_filter(self, fake_manager):
        ctrl = _controller(fake_manager)
        ctrl.state.single.set_year_range(1960, 1961)
        asyncio.run(ctrl.refresh())
        filename, text = ctrl.export_csv()

        assert len(text.strip().splitlines()) == 3
        assert "_1960-1961_" in filename

    def test_comparison_export(self, ten_cyclones):
        manager = FakeDataManager(datasets={"current_1": ten_cyclones, "2k_1_CC": ten_cyclones[:4]})
        ctrl = _controller(manager)
        asyncio.run(ctrl.set_comparison_mode(True))
        filename, text = ctrl.export_comparison_csv()

        assert len(text.strip().splitlines()) == 1 + 10 + 4
        assert filename.startswith("cyclone_comparison_current_vs_2k_")
