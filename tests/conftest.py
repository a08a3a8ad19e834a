"""Pytest configuration and shared fakes."""

import os
from typing import Any, Dict, List, Optional, Sequence

# Keep tests off Redis and on console logging regardless of the local .env
os.environ.setdefault("ENABLE_REDIS", "false")
os.environ.setdefault("ENV", "development")

import pytest

from antipodes.models.dto import GeocodeResult, PlaceDetails, make_id_key


def square_geojson(lng: float, lat: float, size: float = 1.0) -> Dict[str, Any]:
    """Closed GeoJSON square polygon in [lng, lat] order."""
    ring = [
        [lng, lat],
        [lng + size, lat],
        [lng + size, lat + size],
        [lng, lat + size],
        [lng, lat],
    ]
    return {"type": "Polygon", "coordinates": [ring]}


def make_result(
    osm_type: Optional[str] = "relation",
    osm_id: Optional[int] = 1,
    display_name: str = "Somewhere",
    address: Optional[Dict[str, str]] = None,
    geojson: Optional[Dict[str, Any]] = None,
    category: Optional[str] = None,
    place_type: Optional[str] = None,
    boundingbox: Optional[List[str]] = None,
) -> GeocodeResult:
    payload: Dict[str, Any] = {
        "osm_type": osm_type,
        "osm_id": osm_id,
        "display_name": display_name,
        "address": address or {},
    }
    if geojson is not None:
        payload["geojson"] = geojson
    if category is not None:
        payload["class"] = category
    if place_type is not None:
        payload["type"] = place_type
    if boundingbox is not None:
        payload["boundingbox"] = boundingbox
    return GeocodeResult.model_validate(payload)


def make_details(*parts: Dict[str, Any]) -> PlaceDetails:
    return PlaceDetails.model_validate({"address": list(parts)})


class FakeGeocoder:
    """In-memory GeocodingClient that records every call."""

    def __init__(
        self,
        reverse: Optional[GeocodeResult] = None,
        search: Optional[Dict[str, List[GeocodeResult]]] = None,
        details: Optional[Dict[str, PlaceDetails]] = None,
        lookup: Optional[Dict[str, GeocodeResult]] = None,
    ):
        self.reverse_result = reverse
        self.search_results = search or {}
        self.details = details or {}
        self.lookup_results = lookup or {}
        self.calls: List[tuple] = []

    async def reverse_geocode(self, lat: float, lng: float) -> Optional[GeocodeResult]:
        self.calls.append(("reverse", (lat, lng)))
        return self.reverse_result

    async def search_geocode(self, query: str) -> List[GeocodeResult]:
        self.calls.append(("search", query))
        return list(self.search_results.get(query, []))

    async def fetch_details(self, osm_type: str, osm_id: Any) -> Optional[PlaceDetails]:
        key = make_id_key(osm_type, osm_id)
        self.calls.append(("details", key))
        return self.details.get(key)

    async def lookup_objects(self, id_keys: Sequence[str]) -> List[GeocodeResult]:
        self.calls.append(("lookup", tuple(id_keys)))
        return [self.lookup_results[key] for key in id_keys if key in self.lookup_results]

    async def aclose(self) -> None:
        pass

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def springfield():
    """Reverse result for a click in Springfield, Illinois, plus its details."""
    clicked = make_result(
        osm_type="way",
        osm_id=4242,
        display_name="Old State Capitol, Springfield, Sangamon County, Illinois, USA",
        address={"city": "Springfield", "state": "Illinois", "country": "USA"},
        geojson=square_geojson(-89.65, 39.80, 0.01),
    )
    details = make_details(
        {"osm_id": 4242, "osm_type": "W", "class": "historic", "type": "monument",
         "admin_level": 15, "localname": "Old State Capitol"},
        {"osm_id": 124, "osm_type": "R", "class": "boundary", "type": "administrative",
         "admin_level": 8, "localname": "Springfield"},
        {"osm_id": 125, "osm_type": "R", "class": "boundary", "type": "administrative",
         "admin_level": 6, "localname": "Sangamon County"},
        {"osm_id": 122586, "osm_type": "R", "class": "boundary", "type": "administrative",
         "admin_level": 4, "localname": "Illinois"},
        # Same relation reported twice by the address breakdown
        {"osm_id": 122586, "osm_type": "R", "class": "place", "type": "state",
         "localname": "Illinois"},
        {"osm_id": None, "osm_type": None, "class": "place", "type": "postcode",
         "localname": "62701"},
    )
    usa = make_result(
        osm_type="relation",
        osm_id=148838,
        display_name="United States",
        category="boundary",
        place_type="administrative",
    )
    usa_node = make_result(osm_type="node", osm_id=9, display_name="USA Diner", category="amenity")
    geocoder = FakeGeocoder(
        reverse=clicked,
        details={"W4242": details},
        search={"USA": [usa_node, usa]},
    )
    return clicked, geocoder
