"""
Data Export

CSV and GeoJSON renderings of the currently displayed cyclones, for the
single view and for the A/B comparison view. Functions return document
text; writing or downloading it is up to the caller.
"""

import csv
import io
import json
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence

from .config import scenario_display_name
from .models import Cyclone
from .state import ScenarioSelection, YearRange

CSV_COLUMNS = [
    'ID', 'Name', 'Year', 'Genesis Month', 'Max Category', 'Max Wind (km/h)',
    'Min Pressure (hPa)', 'Duration (days)', 'Genesis Lat', 'Genesis Lon', 'Landfall',
]

TRACK_CSV_COLUMNS = [
    'Cyclone_ID', 'Name', 'Year', 'Track_Point', 'Date', 'Latitude', 'Longitude',
    'Category', 'Wind_Speed_kmh', 'Pressure_hPa',
]


def _fmt(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _cyclone_row(cyclone: Cyclone) -> List[str]:
    return [
        cyclone.id,
        cyclone.name,
        str(cyclone.year),
        str(cyclone.genesis_month) if cyclone.genesis_month else 'N/A',
        str(cyclone.max_category),
        _fmt(cyclone.max_wind),
        _fmt(cyclone.min_pressure),
        _fmt(cyclone.duration),
        _fmt(cyclone.genesis_lat),
        _fmt(cyclone.genesis_lon),
        'Yes' if cyclone.landfall else 'No',
    ]


def export_filename(selection: ScenarioSelection, year_range: Optional[YearRange] = None,
                    prefix: str = "cyclone_data", extension: str = "csv",
                    on: Optional[date] = None) -> str:
    """
    Build an export file name, e.g. ``cyclone_data_2k_ensemble3_CC_2040-2050_2025-10-08.csv``.
    """
    on = on or datetime.now(timezone.utc).date()
    name = f"{prefix}_{selection.scenario_id.value}_ensemble{selection.ensemble_id}"
    if selection.sst_model is not None:
        name += f"_{selection.sst_model.value}"
    if year_range is not None:
        name += f"_{year_range.min}-{year_range.max}"
    return f"{name}_{on.isoformat()}.{extension}"


def cyclones_to_csv(cyclones: Sequence[Cyclone]) -> str:
    """One row per cyclone with the fixed summary columns"""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator='\n')
    writer.writerow(CSV_COLUMNS)
    for cyclone in cyclones:
        writer.writerow(_cyclone_row(cyclone))
    return buf.getvalue()


def comparison_to_csv(cyclones_a: Sequence[Cyclone], cyclones_b: Sequence[Cyclone],
                      selection_a: ScenarioSelection, selection_b: ScenarioSelection) -> str:
    """Summary rows for both comparison sides, prefixed with a Scenario column"""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator='\n')
    writer.writerow(['Scenario'] + CSV_COLUMNS)
    for selection, cyclones in ((selection_a, cyclones_a), (selection_b, cyclones_b)):
        label = scenario_display_name(selection.scenario_id)
        for cyclone in cyclones:
            writer.writerow([label] + _cyclone_row(cyclone))
    return buf.getvalue()


def track_points_to_csv(cyclones: Sequence[Cyclone]) -> str:
    """One row per track point"""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator='\n')
    writer.writerow(TRACK_CSV_COLUMNS)
    for cyclone in cyclones:
        for index, point in enumerate(cyclone.track, start=1):
            writer.writerow([
                cyclone.id, cyclone.name, cyclone.year, index, point.date,
                _fmt(point.lat), _fmt(point.lon), point.category,
                _fmt(point.wind_speed), _fmt(point.pressure),
            ])
    return buf.getvalue()


def _feature(cyclone: Cyclone, extra: Optional[Dict] = None) -> Dict:
    properties = {
        'id': cyclone.id,
        'name': cyclone.name,
        'year': cyclone.year,
        'maxCategory': cyclone.max_category,
        'maxWind': cyclone.max_wind,
        'minPressure': cyclone.min_pressure,
        'duration': cyclone.duration,
        'landfall': cyclone.landfall,
        'genesisLat': cyclone.genesis_lat,
        'genesisLon': cyclone.genesis_lon,
    }
    if extra:
        properties = {**extra, **properties}
    return {
        'type': 'Feature',
        'geometry': {
            'type': 'LineString',
            'coordinates': [[p.lon, p.lat] for p in cyclone.track],
        },
        'properties': properties,
    }


def _selection_meta(selection: ScenarioSelection) -> Dict:
    return {
        'scenario': selection.scenario_id.value,
        'ensemble': selection.ensemble_id,
        'sstModel': selection.sst_model.value if selection.sst_model else None,
    }


def cyclones_to_geojson(cyclones: Sequence[Cyclone], selection: ScenarioSelection,
                        exported_at: Optional[datetime] = None) -> str:
    """FeatureCollection with one LineString per cyclone that has a track"""
    exported_at = exported_at or datetime.now(timezone.utc)
    features = [_feature(c) for c in cyclones if c.track]
    collection = {
        'type': 'FeatureCollection',
        'metadata': {
            **_selection_meta(selection),
            'exportDate': exported_at.isoformat(),
            'cycloneCount': len(features),
        },
        'features': features,
    }
    return json.dumps(collection, indent=2)


def comparison_to_geojson(cyclones_a: Sequence[Cyclone], cyclones_b: Sequence[Cyclone],
                          selection_a: ScenarioSelection, selection_b: ScenarioSelection,
                          exported_at: Optional[datetime] = None) -> str:
    """FeatureCollection for both comparison sides, tagged with scenarioType A/B"""
    exported_at = exported_at or datetime.now(timezone.utc)
    features = []
    for side, selection, cyclones in (('A', selection_a, cyclones_a), ('B', selection_b, cyclones_b)):
        label = scenario_display_name(selection.scenario_id)
        features.extend(
            _feature(c, {'scenario': label, 'scenarioType': side}) for c in cyclones if c.track
        )
    collection = {
        'type': 'FeatureCollection',
        'metadata': {
            'comparisonMode': True,
            'scenarioA': _selection_meta(selection_a),
            'scenarioB': _selection_meta(selection_b),
            'exportDate': exported_at.isoformat(),
            'cycloneCountA': sum(1 for c in cyclones_a if c.track),
            'cycloneCountB': sum(1 for c in cyclones_b if c.track),
        },
        'features': features,
    }
    return json.dumps(collection, indent=2)


def comparison_filename(selection_a: ScenarioSelection, selection_b: ScenarioSelection,
                        extension: str = "csv", on: Optional[date] = None) -> str:
    on = on or datetime.now(timezone.utc).date()
    name = (f"cyclone_comparison_{selection_a.scenario_id.value}_vs_{selection_b.scenario_id.value}"
            f"_ensemble{selection_a.ensemble_id}_vs_{selection_b.ensemble_id}")
    for selection in (selection_a, selection_b):
        if selection.sst_model is not None:
            name += f"_{selection.sst_model.value}"
    return f"{name}_{on.isoformat()}.{extension}"
