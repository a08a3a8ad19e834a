# antipodes/services/hierarchy.py
"""
Turns one geocoded feature into the ladder of administrative areas that
contain it, most specific first (neighbourhood -> ... -> country).
"""

from enum import Enum
from typing import List, Optional, Set

import structlog
from pydantic import BaseModel

from antipodes.core.config import settings
from antipodes.models.dto import AddressPart, GeocodeResult, HierarchyLevel, make_id_key
from antipodes.services.geocoding import GeocodingClient
from antipodes.services.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)

RECOGNIZED_LEVEL_TYPES = frozenset({
    "neighbourhood", "suburb", "village", "hamlet", "city_district",
    "district", "borough", "town", "city", "municipality", "county",
    "state_district", "province", "state", "region", "prefecture",
    "country", "territory", "sovereignty", "continent",
})

# Nominatim reports admin_level 15 for anything that is not an administrative boundary
MAX_ADMIN_LEVEL = 14

FALLBACK_LEVEL_NAME = "Selected area"

# /details sends single letters, every other endpoint full words
OSM_TYPE_NAMES = {"N": "node", "W": "way", "R": "relation"}

class ResolutionStatus(str, Enum):
    IDLE = "IDLE"
    RESOLVING = "RESOLVING"
    READY = "READY"
    EMPTY = "EMPTY"
    FAILED = "FAILED"

class HierarchyResolution(BaseModel):
    status: ResolutionStatus
    levels: List[HierarchyLevel] = []

def is_hierarchy_part(part: AddressPart) -> bool:
    """
    Whether a /details address part is an administrative tier.

    A part needs an identity and either a recognized place type or an
    administrative admin_level. "Administrative" means 1..14: Nominatim
    sends 15 for every non-boundary feature, so 15 is not treated as a
    positive level even though it is greater than zero.
    """
    if part.osm_id is None or not part.osm_type:
        return False
    if part.type in RECOGNIZED_LEVEL_TYPES:
        return True
    return part.admin_level is not None and 0 < part.admin_level <= MAX_ADMIN_LEVEL

def osm_type_name(osm_type: str) -> str:
    """'R' or 'relation' -> 'relation'."""
    return OSM_TYPE_NAMES.get(osm_type.upper(), osm_type.lower())

def level_from_part(part: AddressPart) -> HierarchyLevel:
    return HierarchyLevel(
        name=part.label or part.type or FALLBACK_LEVEL_NAME,
        osm_id=str(part.osm_id),
        osm_type=osm_type_name(part.osm_type),
        id_key=make_id_key(part.osm_type, part.osm_id),
    )

def level_from_result(result: GeocodeResult, name: Optional[str] = None) -> HierarchyLevel:
    if name is None:
        name = result.display_name.split(",")[0].strip() or FALLBACK_LEVEL_NAME
    return HierarchyLevel(
        name=name,
        osm_id=str(result.osm_id),
        osm_type=osm_type_name(result.osm_type),
        id_key=result.id_key,
    )

def _is_admin_boundary(result: GeocodeResult) -> bool:
    return result.osm_type == "relation" and (result.category == "boundary" or result.type == "administrative")

class HierarchyResolver:
    """
    Builds HierarchyLevel sequences from geocoder results.

    Also owns the point-selection rate limiter, since every accepted click
    fans out into up to three sequential Nominatim calls.
    """

    def __init__(self, client: GeocodingClient, rate_limiter: Optional[RateLimiter] = None):
        self.client = client
        self.rate_limiter = rate_limiter or RateLimiter(settings.CLICK_DEBOUNCE_MS / 1000)

    async def trace_hierarchy(self, initial: GeocodeResult) -> List[HierarchyLevel]:
        """Ordered, id_key-unique levels for `initial`; empty when unavailable."""
        resolution = await self.resolve(initial)
        return resolution.levels

    async def resolve(self, initial: GeocodeResult) -> HierarchyResolution:
        if not initial.has_identity:
            return HierarchyResolution(status=ResolutionStatus.EMPTY)
        try:
            levels = await self._trace(initial)
        except Exception as e:
            logger.exception("hierarchy_trace_failed", id_key=initial.id_key, error=str(e))
            return HierarchyResolution(status=ResolutionStatus.FAILED)
        status = ResolutionStatus.READY if levels else ResolutionStatus.EMPTY
        return HierarchyResolution(status=status, levels=levels)

    async def _trace(self, initial: GeocodeResult) -> List[HierarchyLevel]:
        levels: List[HierarchyLevel] = []
        seen: Set[str] = set()

        details = await self.client.fetch_details(initial.osm_type, initial.osm_id)
        for part in details.address if details else []:
            if not is_hierarchy_part(part):
                continue
            level = level_from_part(part)
            if level.id_key in seen:
                continue
            seen.add(level.id_key)
            levels.append(level)

        country = (initial.address.get("country") or "").strip()
        if country and not any(country.lower() in level.name.lower() for level in levels):
            candidate = await self._find_country(country)
            if candidate is not None and candidate.id_key not in seen:
                seen.add(candidate.id_key)
                levels.append(level_from_result(candidate, name=country))

        if initial.id_key not in seen:
            levels.insert(0, level_from_result(initial))

        logger.info("hierarchy_traced", id_key=initial.id_key, levels=[level.id_key for level in levels])
        return levels

    async def _find_country(self, country: str) -> Optional[GeocodeResult]:
        candidates = [c for c in await self.client.search_geocode(country) if c.has_identity]
        if not candidates:
            logger.info("country_not_found", country=country)
            return None
        for candidate in candidates:
            if _is_admin_boundary(candidate):
                return candidate
        return candidates[0]
