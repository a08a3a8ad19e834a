from math import asin, cos, radians, sin, sqrt
from typing import Any, List, Sequence

from antipodes.models.dto import Boundary, Coordinate
from antipodes.utils.geometry import map_coordinates

# Mean Earth radius in kilometers
EARTH_RADIUS_KM = 6371.0

def antipode(coord: Coordinate) -> Coordinate:
    """
    The point on the far side of the Earth: latitude negated, longitude
    shifted by 180 degrees. Longitude stays in (-180, 180].
    """
    lat, lng = _antipode_pair((coord.lat, coord.lng))
    return Coordinate(lat=lat, lng=lng)

def _antipode_pair(pair: Sequence[float]) -> List[float]:
    # Plain arithmetic, no range checks: polygon leaves may be out of range
    lng = pair[1] + 180
    if lng > 180:
        lng -= 360
    return [-pair[0], lng]

def antipode_polygon(polygon: Any) -> Any:
    """
    Antipode of every [lat, lng] pair in a ring, polygon or multipolygon.

    The nesting is walked structurally, so ring count, points per ring and
    polygon grouping come back unchanged. Pairs outside the valid
    lat/lng ranges are transformed as-is.
    """
    return map_coordinates(polygon, _antipode_pair)

def antipode_boundary(boundary: Boundary) -> Boundary:
    return Boundary(polygons=antipode_polygon([[list(map(list, ring)) for ring in polygon] for polygon in boundary.polygons]))

def surface_distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle (haversine) distance in kilometers."""
    lat1, lng1, lat2, lng2 = map(radians, [a.lat, a.lng, b.lat, b.lng])

    h = sin((lat2 - lat1) / 2) ** 2 + cos(lat1) * cos(lat2) * sin((lng2 - lng1) / 2) ** 2
    # Rounding can push h a hair past 1 for exact antipodes
    return 2 * EARTH_RADIUS_KM * asin(sqrt(min(1.0, h)))
