"""
Cyclone Data Module
Fetches simulated tropical cyclone tracks and precomputed density grids

Data Source: d4PDF large-ensemble climate simulations, served by the
track explorer's JSON data API (`action=getCycloneData`) and as
per-ensemble density text files.
"""

import asyncio
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import aiohttp

from ..config import (
    API_BASE_URL,
    API_TIMEOUT_S,
    DENSITY_BASE_URL,
    RETRY_ATTEMPTS,
    RETRY_DELAY_S,
    ScenarioId,
    SSTModelId,
)
from ..errors import DataFetchFailure, DensityResourceUnavailable
from ..models import Cyclone, GridCell, parse_cyclones
from ..state import ScenarioSelection

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

GRID_INT_COLUMNS = ('ix', 'iy', 'count')
GRID_FLOAT_COLUMNS = ('lon_west', 'lon_east', 'lat_south', 'lat_north', 'lon_center', 'lat_center')

# Loaded by preload_common_scenarios()
COMMON_SELECTIONS = [
    ScenarioSelection(ScenarioId.CURRENT, 1),
    ScenarioSelection(ScenarioId.PLUS_2K, 1, SSTModelId.CC),
    ScenarioSelection(ScenarioId.PLUS_4K, 1, SSTModelId.CC),
]


@dataclass
class CycloneDataset:
    """Cyclones for one (scenario, ensemble, SST model) as returned by the API"""
    selection: ScenarioSelection
    cyclones: List[Cyclone]
    metadata: Dict[str, Any] = field(default_factory=dict)
    total_cyclones: int = 0
    ensemble_id: Optional[Any] = None

    @property
    def status_message(self) -> str:
        message = f"Loaded {len(self.cyclones)} cyclones"
        if self.total_cyclones and self.total_cyclones > len(self.cyclones):
            message += f" (filtered from {self.total_cyclones})"
        return message


def parse_density_csv(text: str) -> List[GridCell]:
    """
    Parse a precomputed density file.

    The first line is a comma-separated header. Rows whose column count
    differs from the header, or whose numeric columns do not parse, are
    skipped. Columns other than the known grid columns are kept as strings
    in ``GridCell.extra``.

    Args:
        text: File contents

    Returns:
        Parsed cells in file order

    Raises:
        DensityResourceUnavailable: If the header lacks required columns
    """
    reader = csv.reader(io.StringIO(text.strip()))
    try:
        header = [h.strip() for h in next(reader)]
    except StopIteration:
        raise DensityResourceUnavailable("Density file is empty") from None

    missing = set(GRID_INT_COLUMNS + GRID_FLOAT_COLUMNS) - set(header)
    if missing:
        raise DensityResourceUnavailable(f"Density file missing columns: {sorted(missing)}")

    cells = []
    skipped = 0
    for values in reader:
        if len(values) != len(header):
            skipped += 1
            continue
        row = {name: value.strip() for name, value in zip(header, values)}
        try:
            typed: Dict[str, Any] = {name: int(float(row[name])) for name in GRID_INT_COLUMNS}
            typed.update({name: float(row[name]) for name in GRID_FLOAT_COLUMNS})
        except ValueError:
            skipped += 1
            continue
        extra = {k: v for k, v in row.items() if k not in typed}
        cells.append(GridCell(extra=extra, **typed))

    if skipped:
        logger.warning(f"Skipped {skipped} malformed density rows")
    logger.info(f"Parsed {len(cells)} density cells from CSV")
    return cells


class CycloneDataManager:
    """Loads and caches cyclone datasets and precomputed density grids"""

    def __init__(self, api_url: str = API_BASE_URL, density_url: str = DENSITY_BASE_URL,
                 timeout_s: float = API_TIMEOUT_S, retry_attempts: int = RETRY_ATTEMPTS,
                 retry_delay_s: float = RETRY_DELAY_S, region_filter: str = "australia"):
        self.api_url = api_url
        self.density_url = density_url if density_url.endswith("/") else density_url + "/"
        self.timeout_s = timeout_s
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay_s = retry_delay_s
        self.region_filter = region_filter
        self.cache: Dict[str, CycloneDataset] = {}
        self._in_flight: Set[str] = set()

    # ------------------------------------------------------------------
    # Cyclone datasets
    # ------------------------------------------------------------------

    def build_api_params(self, selection: ScenarioSelection) -> Dict[str, str]:
        """Query parameters for a getCycloneData request"""
        params = {
            'action': 'getCycloneData',
            'scenario': selection.scenario_id.value,
            'ensemble': str(selection.ensemble_id),
            'filter': self.region_filter or 'all',
            'use_sample': 'false',
            'debug': 'true',
        }
        if selection.sst_model is not None:
            params['sst'] = selection.sst_model.value
        return params

    def get_cached(self, selection: ScenarioSelection) -> Optional[CycloneDataset]:
        return self.cache.get(selection.cache_key)

    def is_loading(self, selection: ScenarioSelection) -> bool:
        return selection.cache_key in self._in_flight

    async def load_data(self, selection: ScenarioSelection,
                        force_refresh: bool = False) -> Optional[CycloneDataset]:
        """
        Return the dataset for a selection, fetching it if not cached.

        A request for a key that is already being fetched is skipped and
        returns None; the in-flight request will populate the cache.

        Args:
            selection: Scenario / ensemble / SST model to load
            force_refresh: Ignore any cached copy

        Returns:
            The dataset, or None if the load was coalesced into an in-flight one

        Raises:
            DataFetchFailure: If the API could not be reached or reported an error
        """
        cache_key = selection.cache_key

        if cache_key in self._in_flight:
            logger.info(f"Data already loading for: {cache_key}")
            return None

        if not force_refresh and cache_key in self.cache:
            logger.info(f"Using cached data for: {cache_key}")
            return self.cache[cache_key]

        self._in_flight.add(cache_key)
        try:
            params = self.build_api_params(selection)
            logger.info(f"Fetching cyclone data with params: {params}")
            payload = await self._get_json(self.api_url, params)

            if not isinstance(payload, dict) or not payload.get('success'):
                error = payload.get('error') if isinstance(payload, dict) else None
                raise DataFetchFailure(f"API error for {cache_key}: {error or 'Unknown API error'}")

            dataset = self._build_dataset(selection, payload.get('data') or {})
            self.cache[cache_key] = dataset
            logger.info(f"{dataset.status_message} for {cache_key}")
            return dataset
        finally:
            self._in_flight.discard(cache_key)

    def _build_dataset(self, selection: ScenarioSelection, data: Dict[str, Any]) -> CycloneDataset:
        records = data.get('cyclones')
        if not isinstance(records, list):
            raise DataFetchFailure(f"Response for {selection.cache_key} has no cyclones array")

        cyclones = parse_cyclones(records)
        metadata = data.get('metadata') or {}
        if metadata:
            logger.info(f"Period: {metadata.get('period')}, Ensemble: {data.get('ensemble_id')}")

        total = data.get('total_cyclones')
        return CycloneDataset(
            selection=selection,
            cyclones=cyclones,
            metadata=metadata,
            total_cyclones=total if isinstance(total, int) else len(cyclones),
            ensemble_id=data.get('ensemble_id'),
        )

    def clear_cache(self, scenario: Optional[str] = None) -> None:
        """Drop cached datasets for one scenario (by key prefix) or all of them"""
        if scenario:
            prefix = ScenarioId(scenario).value + "_"
            for key in [k for k in self.cache if k.startswith(prefix)]:
                del self.cache[key]
        else:
            self.cache.clear()
        logger.info(f"Cache cleared for: {scenario or 'all scenarios'}")

    async def preload_common_scenarios(self) -> int:
        """Warm the cache with the default selections; returns how many loaded"""
        loaded = 0
        for selection in COMMON_SELECTIONS:
            try:
                if await self.load_data(selection) is not None:
                    loaded += 1
            except DataFetchFailure as e:
                logger.warning(f"Failed to preload {selection.cache_key}: {e}")
        return loaded

    # ------------------------------------------------------------------
    # Precomputed density grids
    # ------------------------------------------------------------------

    def density_filename(self, selection: ScenarioSelection) -> str:
        """File name of the precomputed density grid for a selection"""
        scenario = selection.scenario
        member = f"{scenario.server_ensemble(selection.ensemble_id):03d}"
        sst = selection.sst_model.value if selection.sst_model else SSTModelId.CC.value
        return scenario.density_file_pattern.format(ensemble=member, sst=sst)

    async def fetch_precomputed_density(self, selection: ScenarioSelection) -> List[GridCell]:
        """
        Fetch and parse the precomputed density grid for a selection.

        Raises:
            DensityResourceUnavailable: If the file is missing, unreadable or has no cells
        """
        filename = self.density_filename(selection)
        url = self.density_url + filename
        logger.info(f"Fetching pre-computed density data from: {url}")

        try:
            text = await self._get_text(url)
        except DataFetchFailure as e:
            raise DensityResourceUnavailable(f"Could not load density data {filename}: {e}") from e

        cells = parse_density_csv(text)
        if not cells:
            raise DensityResourceUnavailable(f"Density data {filename} contains no cells")

        logger.info(f"Successfully loaded {len(cells)} density cells from {filename}")
        return cells

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _get_json(self, url: str, params: Dict[str, str]) -> Any:
        """GET a JSON document, retrying transient failures"""
        return await self._with_retries(url, params, as_json=True)

    async def _get_text(self, url: str) -> str:
        """GET a text document, retrying transient failures"""
        return await self._with_retries(url, None, as_json=False)

    async def _with_retries(self, url: str, params: Optional[Dict[str, str]], as_json: bool) -> Any:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.get(
                        url, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout_s)
                    ) as response:
                        if response.status == 404:
                            # Missing files do not appear on retry
                            raise DataFetchFailure(f"HTTP 404 for {url}")
                        if response.status != 200:
                            raise aiohttp.ClientResponseError(
                                response.request_info, response.history,
                                status=response.status, message=f"HTTP {response.status}",
                            )
                        if as_json:
                            return await response.json(content_type=None)
                        return await response.text()
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
                logger.error(f"Request to {url} failed (attempt {attempt}/{self.retry_attempts}): {e}")
                if attempt < self.retry_attempts:
                    await asyncio.sleep(self.retry_delay_s)

        raise DataFetchFailure(f"Failed to fetch {url}: {last_error}") from last_error
