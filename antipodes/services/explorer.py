# antipodes/services/explorer.py
import time
from collections import OrderedDict
from typing import Callable, Optional

import structlog

from antipodes.core.config import settings
from antipodes.models.dto import Coordinate
from antipodes.services import explorer_state as reducers
from antipodes.services.boundary_loader import BoundaryLoader
from antipodes.services.explorer_state import ExplorerState
from antipodes.services.geocoding import GeocodingClient
from antipodes.services.hierarchy import HierarchyResolver
from antipodes.utils.geometry import bbox_center, boundary_from_geojson

logger = structlog.get_logger(__name__)

class UnknownLevelError(KeyError):
    """The requested id_key is not in the current hierarchy."""

class AntipodeExplorer:
    """
    Owns one user's ExplorerState and runs the user actions against it.

    Each action awaits its network calls and then commits through a reducer
    that re-reads `self.state`, so overlapping actions never clobber a newer
    result with an older one.
    """

    def __init__(
        self,
        client: GeocodingClient,
        *,
        resolver: Optional[HierarchyResolver] = None,
        loader: Optional[BoundaryLoader] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.resolver = resolver or HierarchyResolver(client)
        self.loader = loader or BoundaryLoader(client)
        self.clock = clock
        self.state = ExplorerState()

    async def click(self, lat: float, lng: float) -> ExplorerState:
        """Reverse-geocode a map click and trace its hierarchy."""
        now = self.clock()
        self.state = reducers.settle_input_mode(self.state, now)
        if not reducers.accepts_clicks(self.state):
            logger.debug("click_ignored", input_mode=self.state.input_mode.value)
            return self.state
        if not self.resolver.rate_limiter.try_acquire(now):
            logger.debug("click_throttled", lat=lat, lng=lng)
            return self.state

        self.state = reducers.begin_query(self.state, Coordinate(lat=lat, lng=lng))
        token = self.state.token

        result = await self.client.reverse_geocode(lat, lng)
        if result is None:
            self.state = reducers.apply_no_result(self.state, token, reducers.NO_RESULT_AT_POINT)
            return self.state

        resolution = await self.resolver.resolve(result)
        self.state = reducers.apply_resolution(self.state, token, resolution, boundary_from_geojson(result.geojson))
        return self.state

    async def search(self, query: str) -> ExplorerState:
        """Forward-search a place name; prefer the first candidate with an outline."""
        self.state = reducers.begin_query(self.state)
        token = self.state.token

        results = await self.client.search_geocode(query)
        if not results:
            self.state = reducers.apply_no_result(self.state, token, reducers.NO_SEARCH_RESULT.format(query=query))
            return self.state

        result = next((r for r in results if boundary_from_geojson(r.geojson) is not None), results[0])
        center = bbox_center(result.boundingbox)
        if center is None and result.lat is not None and result.lon is not None:
            center = Coordinate(lat=result.lat, lng=result.lon)

        resolution = await self.resolver.resolve(result)
        self.state = reducers.apply_resolution(
            self.state, token, resolution, boundary_from_geojson(result.geojson), center
        )
        return self.state

    async def select_level(self, id_key: str) -> ExplorerState:
        """Show one hierarchy level's boundary, fetching it on first use."""
        hierarchy = self.state.hierarchy
        if hierarchy.find(id_key) is None:
            raise UnknownLevelError(id_key)

        self.state = reducers.begin_level_load(self.state, id_key)
        outcome = await self.loader.load_level(hierarchy, id_key)
        self.state = reducers.apply_boundary(self.state, outcome)
        return self.state

    def begin_selection(self) -> ExplorerState:
        self.state = reducers.begin_selection(self.state)
        return self.state

    def cancel_selection(self) -> ExplorerState:
        self.state = reducers.cancel_selection(self.state)
        return self.state

    def finish_selection(self, south_west: Coordinate, north_east: Coordinate) -> ExplorerState:
        self.state = reducers.finish_selection(
            self.state, south_west, north_east, self.clock(), settings.SELECTION_COOLDOWN_MS / 1000
        )
        return self.state

    def dig(self) -> ExplorerState:
        self.state = reducers.dig(self.state)
        logger.info("dug_to_antipode", source=self.state.source_center.model_dump(),
                    antipode=self.state.anti_center.model_dump())
        return self.state

    def back_to_source(self) -> ExplorerState:
        self.state = reducers.back_to_source(self.state)
        return self.state

class ExplorerRegistry:
    """In-memory explorers keyed by anonymous client id, least recently used evicted."""

    def __init__(self, client: GeocodingClient, max_sessions: int = 1000):
        self.client = client
        self.max_sessions = max_sessions
        self._explorers: "OrderedDict[str, AntipodeExplorer]" = OrderedDict()

    def get(self, session_id: str) -> AntipodeExplorer:
        explorer = self._explorers.get(session_id)
        if explorer is None:
            explorer = AntipodeExplorer(self.client)
            self._explorers[session_id] = explorer
            if len(self._explorers) > self.max_sessions:
                evicted, _ = self._explorers.popitem(last=False)
                logger.info("explorer_evicted", session_id=evicted)
        else:
            self._explorers.move_to_end(session_id)
        return explorer

    def __len__(self) -> int:
        return len(self._explorers)
