# antipodes/services/geocoding.py
"""
Nominatim client.

Every public coroutine returns a result or an explicit absence (None / []).
Timeouts are retried with exponential backoff; any other transport, status
or parse failure is logged and normalized to absence so callers never see an
exception from the network.
"""

import asyncio
import random
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
import structlog
from pydantic import ValidationError

from antipodes.core.config import settings
from antipodes.models.dto import GeocodeResult, PlaceDetails, make_id_key

logger = structlog.get_logger(__name__)

class GeocodingClient(Protocol):
    """What the resolver, loader and explorer need from a geocoder."""

    async def reverse_geocode(self, lat: float, lng: float) -> Optional[GeocodeResult]: ...

    async def search_geocode(self, query: str) -> List[GeocodeResult]: ...

    async def fetch_details(self, osm_type: str, osm_id: Any) -> Optional[PlaceDetails]: ...

    async def lookup_objects(self, id_keys: Sequence[str]) -> List[GeocodeResult]: ...


class NominatimClient:
    """GeocodingClient backed by a Nominatim HTTP endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_retries = settings.NOMINATIM_MAX_RETRIES if max_retries is None else max_retries
        self.initial_backoff = settings.NOMINATIM_INITIAL_BACKOFF if initial_backoff is None else initial_backoff
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.NOMINATIM_BASE_URL,
            timeout=settings.NOMINATIM_TIMEOUT if timeout is None else timeout,
            headers={
                "User-Agent": settings.NOMINATIM_USER_AGENT,
                "Accept-Language": settings.NOMINATIM_ACCEPT_LANGUAGE,
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        for attempt in range(self.max_retries + 1):
            try:
                response = await self._client.get(path, params=params)
                response.raise_for_status()
                return response.json()
            except httpx.TimeoutException:
                logger.warning("nominatim_timeout", path=path, attempt=attempt + 1)
                if attempt < self.max_retries:
                    wait_time = self.initial_backoff * (2 ** attempt) * (1 + random.uniform(0, 0.1))
                    await asyncio.sleep(wait_time)
            except httpx.HTTPStatusError as e:
                logger.error("nominatim_status_error", path=path, status_code=e.response.status_code)
                return None
            except (httpx.HTTPError, ValueError) as e:
                # ValueError covers undecodable JSON bodies
                logger.error("nominatim_request_failed", path=path, error=str(e))
                return None
        logger.error("nominatim_retries_exhausted", path=path, attempts=self.max_retries + 1)
        return None

    @staticmethod
    def _parse_result(data: Any) -> Optional[GeocodeResult]:
        if not isinstance(data, dict) or "error" in data:
            return None
        try:
            return GeocodeResult.model_validate(data)
        except ValidationError as e:
            logger.warning("nominatim_result_invalid", error=str(e))
            return None

    def _parse_results(self, data: Any) -> List[GeocodeResult]:
        if not isinstance(data, list):
            return []
        parsed = (self._parse_result(item) for item in data)
        return [result for result in parsed if result is not None]

    async def reverse_geocode(self, lat: float, lng: float) -> Optional[GeocodeResult]:
        """Most specific feature containing the point, with address and outline."""
        data = await self._get_json(
            "/reverse",
            {
                "format": "json",
                "lat": lat,
                "lon": lng,
                "zoom": settings.REVERSE_ZOOM,
                "addressdetails": 1,
                "polygon_geojson": 1,
                "polygon_threshold": settings.POLYGON_THRESHOLD_FINE,
            },
        )
        if isinstance(data, dict) and "error" in data:
            # Open water and other unmapped spots
            logger.info("nominatim_no_result", lat=lat, lng=lng, reason=data.get("error"))
            return None
        return self._parse_result(data)

    async def search_geocode(self, query: str) -> List[GeocodeResult]:
        """Candidates for a free-text place name, in Nominatim's ranking order."""
        data = await self._get_json(
            "/search",
            {
                "format": "json",
                "q": query,
                "limit": settings.SEARCH_LIMIT,
                "addressdetails": 1,
                "polygon_geojson": 1,
                "polygon_threshold": settings.POLYGON_THRESHOLD_FINE,
            },
        )
        return self._parse_results(data)

    async def fetch_details(self, osm_type: str, osm_id: Any) -> Optional[PlaceDetails]:
        """Containing administrative chain of one feature, inner to outer."""
        data = await self._get_json(
            "/details",
            {
                "format": "json",
                "osmtype": make_id_key(osm_type, "")[0],
                "osmid": osm_id,
                "addressdetails": 1,
            },
        )
        if not isinstance(data, dict) or "error" in data:
            return None
        try:
            return PlaceDetails.model_validate(data)
        except ValidationError as e:
            logger.warning("nominatim_details_invalid", osm_type=osm_type, osm_id=osm_id, error=str(e))
            return None

    async def lookup_objects(self, id_keys: Sequence[str]) -> List[GeocodeResult]:
        """Full records for identity keys such as R51477, with coarse outlines."""
        if not id_keys:
            return []
        data = await self._get_json(
            "/lookup",
            {
                "format": "json",
                "osm_ids": ",".join(id_keys),
                "addressdetails": 1,
                "polygon_geojson": 1,
                "polygon_threshold": settings.POLYGON_THRESHOLD_COARSE,
            },
        )
        return self._parse_results(data)
