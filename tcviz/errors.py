"""Exception types raised by the scenario state, data manager and controller."""


class TCVizError(Exception):
    """Base class for all track-explorer errors"""


class InvalidScenario(TCVizError, ValueError):
    """Scenario id is not in the configured scenario table"""

    def __init__(self, scenario_id):
        self.scenario_id = scenario_id
        super().__init__(f"Unknown scenario '{scenario_id}'")


class OutOfRangeEnsemble(TCVizError, ValueError):
    """Ensemble id lies outside the scenario's configured range"""

    def __init__(self, scenario_id, ensemble_id, ensemble_min: int, ensemble_max: int):
        self.scenario_id = scenario_id
        self.ensemble_id = ensemble_id
        self.ensemble_min = ensemble_min
        self.ensemble_max = ensemble_max
        super().__init__(
            f"Ensemble {ensemble_id} is out of range for scenario '{scenario_id}' "
            f"(valid: {ensemble_min}-{ensemble_max})"
        )


class InvalidSSTModel(TCVizError, ValueError):
    """SST model is not one of the configured forcing models"""

    def __init__(self, sst_model):
        self.sst_model = sst_model
        super().__init__(f"Unknown SST model '{sst_model}'")


class DataFetchFailure(TCVizError):
    """Cyclone data could not be fetched or decoded"""


class DensityResourceUnavailable(TCVizError):
    """Precomputed density file is missing, unreadable or empty"""


class StaleResultDiscarded(TCVizError):
    """A newer render started while this one was waiting on I/O"""

    def __init__(self, generation: int, current: int):
        self.generation = generation
        self.current = current
        super().__init__(f"Render #{generation} superseded by #{current}")


class ModeUnavailable(TCVizError):
    """Requested visualization mode cannot be enabled in the current state"""
