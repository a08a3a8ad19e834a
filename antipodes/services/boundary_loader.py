# antipodes/services/boundary_loader.py
"""Lazy, at-most-once boundary fetching for hierarchy levels."""

from typing import Optional

import structlog
from pydantic import BaseModel

from antipodes.models.dto import Boundary, Coordinate, GeocodeResult, Hierarchy, HierarchyLevel
from antipodes.services.geocoding import GeocodingClient
from antipodes.utils.geometry import bbox_center, boundary_center, boundary_from_geojson

logger = structlog.get_logger(__name__)

BOUNDARY_UNAVAILABLE = "No boundary is available for {name} right now. Try selecting it again."
UNKNOWN_LEVEL = "Level {id_key} is not part of the current hierarchy."

class LoadOutcome(BaseModel):
    """
    Result of one load_level call.

    `token` is the token of the Hierarchy the load started from; callers
    compare it with their current hierarchy before committing anything.
    """
    token: int
    id_key: str
    hierarchy: Hierarchy
    level: Optional[HierarchyLevel] = None
    boundary: Optional[Boundary] = None
    center: Optional[Coordinate] = None
    fetched: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.boundary is not None

def _pick_match(results, id_key: str) -> Optional[GeocodeResult]:
    with_outline = [r for r in results if r.geojson is not None]
    for result in with_outline:
        if result.has_identity and result.id_key == id_key:
            return result
    return with_outline[0] if with_outline else None

class BoundaryLoader:
    def __init__(self, client: GeocodingClient):
        self.client = client

    async def load_level(self, hierarchy: Hierarchy, id_key: str) -> LoadOutcome:
        """
        Boundary for one level of `hierarchy`.

        A loaded level is served from its cached geojson without touching the
        network. Otherwise the level is looked up once; on success the
        returned hierarchy carries that level with `loaded=True` and its
        geojson cached, every sibling untouched. Failures leave `loaded`
        False so the caller can retry.
        """
        level = hierarchy.find(id_key)
        if level is None:
            return LoadOutcome(token=hierarchy.token, id_key=id_key, hierarchy=hierarchy,
                               error=UNKNOWN_LEVEL.format(id_key=id_key))

        if level.loaded:
            boundary = boundary_from_geojson(level.geojson)
            center = level.center or (boundary_center(boundary) if boundary else None)
            return LoadOutcome(token=hierarchy.token, id_key=id_key, hierarchy=hierarchy,
                               level=level, boundary=boundary, center=center)

        results = await self.client.lookup_objects([id_key])
        match = _pick_match(results, id_key)
        boundary = boundary_from_geojson(match.geojson) if match else None
        if boundary is None:
            logger.warning("boundary_unavailable", id_key=id_key, results=len(results))
            return LoadOutcome(token=hierarchy.token, id_key=id_key, hierarchy=hierarchy,
                               level=level, error=BOUNDARY_UNAVAILABLE.format(name=level.name))

        center = bbox_center(match.boundingbox) or boundary_center(boundary)
        updated = level.model_copy(update={"geojson": match.geojson, "loaded": True, "center": center})
        logger.info("boundary_loaded", id_key=id_key, rings=len(boundary.rings))
        return LoadOutcome(
            token=hierarchy.token,
            id_key=id_key,
            hierarchy=hierarchy.replace_level(updated),
            level=updated,
            boundary=boundary,
            center=center,
            fetched=True,
        )
