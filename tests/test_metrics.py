"""Tests for summary metrics."""

from conftest import make_cyclone, make_grid_cell
from tcviz.config import SCENARIOS, ScenarioId
from tcviz.processing.density import DensityGrid
from tcviz.processing.metrics import (
    annual_average,
    calculate_cyclone_metrics,
    calculate_density_metrics,
)


class TestCycloneMetrics:
    def test_severe_share_of_ten(self, ten_cyclones):
        metrics = calculate_cyclone_metrics(ten_cyclones)
        assert metrics.total_cyclones == 10
        assert metrics.severe_cyclones == 3
        assert metrics.severe_percentage == 30.0

    def test_aggregates(self, ten_cyclones):
        metrics = calculate_cyclone_metrics(ten_cyclones)
        assert metrics.avg_max_category == 2.2
        assert metrics.max_wind_speed == 210.0
        assert metrics.landfall_count == 5
        assert metrics.year_min == 1960
        assert metrics.year_max == 1969
        assert metrics.category_distribution == {1: 4, 2: 3, 3: 1, 4: 1, 5: 1}

    def test_empty_list(self):
        metrics = calculate_cyclone_metrics([])
        assert metrics.total_cyclones == 0
        assert metrics.severe_cyclones == 0
        assert metrics.severe_percentage == 0.0
        assert metrics.avg_max_category == 0.0

    def test_tropical_depression_not_in_distribution(self):
        metrics = calculate_cyclone_metrics([make_cyclone(track=[], max_category=0)])
        assert sum(metrics.category_distribution.values()) == 0

    def test_to_dict(self, ten_cyclones):
        data = calculate_cyclone_metrics(ten_cyclones).to_dict()
        assert data["severeCyclones"] == 3
        assert data["severePercentage"] == 30.0
        assert data["yearRange"] == {"min": 1960, "max": 1969}


class TestDensityMetrics:
    def test_from_cells(self):
        cells = [make_grid_cell(0, 0, 85), make_grid_cell(1, 0, 45),
                 make_grid_cell(2, 0, 12), make_grid_cell(3, 0, 2), make_grid_cell(4, 0, 0)]
        metrics = calculate_density_metrics(cells)
        assert metrics.active_cells == 4
        assert metrics.total_count == 144
        assert metrics.max_count == 85
        assert metrics.mean_count == 36.0
        assert metrics.severity_buckets == {"severe": 1, "high": 1, "moderate": 1, "low": 1}

    def test_from_grid(self):
        grid = DensityGrid(resolution=2.0, counts={(1, 1): 2, (1, 2): 1})
        metrics = calculate_density_metrics(grid)
        assert metrics.active_cells == 2
        assert metrics.total_count == 3
        assert metrics.mean_count == 1.5
        assert metrics.severity_buckets["low"] == 2

    def test_empty(self):
        metrics = calculate_density_metrics([])
        assert metrics.active_cells == 0
        assert metrics.mean_count == 0.0
        assert metrics.to_dict()["severityBuckets"] == {"severe": 0, "high": 0, "moderate": 0, "low": 0}


class TestAnnualAverage:
    def test_full_scenario_span(self):
        # current covers 1951-2011, 61 years
        assert annual_average(122, SCENARIOS[ScenarioId.CURRENT]) == 2.0

    def test_explicit_range(self):
        assert annual_average(15, SCENARIOS[ScenarioId.CURRENT], 2000, 2009) == 1.5

    def test_zero_cyclones(self):
        assert annual_average(0, SCENARIOS[ScenarioId.PLUS_2K]) == 0.0
