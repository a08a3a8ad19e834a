"""
Coordinate-order normalization between Nominatim GeoJSON and the map.

Nominatim nests [lng, lat] pairs at varying depths (Polygon vs MultiPolygon),
the map wants [lat, lng]. Everything here walks the nesting structurally:
a node is a leaf iff it is a 2-element numeric pair, otherwise it is a list
to recurse into.
"""

import math
from numbers import Real
from typing import Any, Callable, List, Optional, Sequence, Tuple

from antipodes.core.config import settings
from antipodes.models.dto import Boundary, Coordinate, GeoJSONGeometry

Pair = List[float]
LeafFn = Callable[[Sequence[float]], Pair]
RingFilter = Callable[[List[Pair]], List[Pair]]

POLYGON_TYPES = ("Polygon", "MultiPolygon")

def is_leaf_pair(node: Any) -> bool:
    """True for [x, y] where both are real numbers (bools excluded)."""
    return (
        isinstance(node, (list, tuple))
        and len(node) == 2
        and all(isinstance(v, Real) and not isinstance(v, bool) for v in node)
    )

def is_ring(node: Any) -> bool:
    return isinstance(node, (list, tuple)) and len(node) > 0 and all(is_leaf_pair(p) for p in node)

def map_coordinates(node: Any, leaf_fn: LeafFn, ring_filter: Optional[RingFilter] = None) -> Any:
    """
    Apply leaf_fn to every coordinate pair at any depth, preserving shape.

    ring_filter, when given, post-processes each ring (a list whose items
    are all pairs) after its leaves were mapped. Scalars outside a pair
    are dropped.
    """
    if is_leaf_pair(node):
        return leaf_fn(node)
    if not isinstance(node, (list, tuple)):
        return None
    mapped = [m for m in (map_coordinates(child, leaf_fn, ring_filter) for child in node) if m is not None]
    if ring_filter is not None and is_ring(node):
        return ring_filter(mapped)
    return mapped

def swap_pair(pair: Sequence[float]) -> Pair:
    return [pair[1], pair[0]]

def downsample_ring(
    ring: List[Pair],
    threshold: Optional[int] = None,
    target: Optional[int] = None,
) -> List[Pair]:
    """
    Thin a ring longer than threshold to roughly target points by fixed stride.

    The first point of every stride is kept and the ring's final point is
    appended when the stride skipped it, so closed rings stay closed.
    """
    threshold = settings.RING_DOWNSAMPLE_THRESHOLD if threshold is None else threshold
    target = settings.RING_DOWNSAMPLE_TARGET if target is None else target
    if len(ring) <= threshold:
        return ring
    step = math.ceil(len(ring) / target)
    sampled = ring[::step]
    if (len(ring) - 1) % step != 0:
        sampled.append(ring[-1])
    return sampled

def to_internal_order(coords: Any, downsample: bool = True) -> Any:
    """[lng, lat] -> [lat, lng] at every depth, thinning oversized rings."""
    return map_coordinates(coords, swap_pair, downsample_ring if downsample else None)

def to_external_order(coords: Any) -> Any:
    """[lat, lng] -> [lng, lat]; the inverse of to_internal_order without thinning."""
    return map_coordinates(coords, swap_pair)

def _nesting_depth(node: Any) -> int:
    depth = 0
    while isinstance(node, (list, tuple)) and node and not is_leaf_pair(node):
        node = node[0]
        depth += 1
    return depth

def boundary_from_geojson(geojson: Optional[GeoJSONGeometry]) -> Optional[Boundary]:
    """Parse a Nominatim Polygon/MultiPolygon into a Boundary; anything else is None."""
    if geojson is None or geojson.type not in POLYGON_TYPES or not geojson.coordinates:
        return None
    internal = to_internal_order(geojson.coordinates)
    # Polygon: ring -> point -> pair (depth 2), MultiPolygon adds one level.
    depth = _nesting_depth(internal)
    if depth == 2:
        polygons = [internal]
    elif depth == 3:
        polygons = internal
    else:
        return None
    polygons = [[ring for ring in polygon if ring] for polygon in polygons]
    polygons = [polygon for polygon in polygons if polygon]
    if not polygons:
        return None
    return Boundary(polygons=polygons)

def boundary_from_ring(ring: Sequence[Sequence[float]]) -> Boundary:
    """Wrap one internal-order ring (e.g. a drawn rectangle) as a Boundary."""
    return Boundary(polygons=[[[tuple(p) for p in ring]]])

def boundary_to_geojson(boundary: Boundary) -> GeoJSONGeometry:
    """Back to wire order; a single polygon is emitted as Polygon."""
    polygons = to_external_order([[list(map(list, ring)) for ring in polygon] for polygon in boundary.polygons])
    if len(polygons) == 1:
        return GeoJSONGeometry(type="Polygon", coordinates=polygons[0])
    return GeoJSONGeometry(type="MultiPolygon", coordinates=polygons)

def rectangle_ring(south_west: Coordinate, north_east: Coordinate) -> List[Pair]:
    """Closed [lat, lng] ring NW -> NE -> SE -> SW -> NW."""
    s, w = south_west.lat, south_west.lng
    n, e = north_east.lat, north_east.lng
    return [[n, w], [n, e], [s, e], [s, w], [n, w]]

def bbox_center(boundingbox: Optional[Sequence[str]]) -> Optional[Coordinate]:
    """Centre of a Nominatim [south, north, west, east] box of numeric strings."""
    if not boundingbox or len(boundingbox) != 4:
        return None
    try:
        south, north, west, east = (float(v) for v in boundingbox)
    except (TypeError, ValueError):
        return None
    return Coordinate(lat=(south + north) / 2, lng=(west + east) / 2)

def boundary_extent(boundary: Boundary) -> Tuple[float, float, float, float]:
    """(south, north, west, east) of a boundary."""
    points = [p for ring in boundary.rings for p in ring]
    lats = [p[0] for p in points]
    lngs = [p[1] for p in points]
    return min(lats), max(lats), min(lngs), max(lngs)

def boundary_center(boundary: Boundary) -> Coordinate:
    """Centre of the boundary's lat/lng extent."""
    south, north, west, east = boundary_extent(boundary)
    return Coordinate(lat=(south + north) / 2, lng=(west + east) / 2)
