"""Global grid bounds and longitude helpers shared by parsing and rasterization."""

LAT_MIN = -90.0
LAT_MAX = 90.0
LON_MIN = -180.0
LON_MAX = 180.0


def normalize_longitude(lon: float) -> float:
    """Wrap a longitude into [-180, 180), e.g. 200 -> -160"""
    return (lon - LON_MIN) % 360.0 + LON_MIN


def shortest_lon_delta(lon1: float, lon2: float) -> float:
    """Signed longitude change from lon1 to lon2 along the shorter way round"""
    d_lon = lon2 - lon1
    if abs(d_lon) > 180.0:
        d_lon = d_lon - 360.0 if d_lon > 0 else d_lon + 360.0
    return d_lon
