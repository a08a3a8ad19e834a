# antipodes/services/explorer_state.py
"""
Explorer state and the pure reducers that advance it.

Every reducer takes the current ExplorerState and returns a new one; none
of them mutate their input. Results of asynchronous work carry the token of
the query that started them and are dropped when that token is no longer
current.
"""

from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from antipodes.models.dto import Boundary, Coordinate, Hierarchy
from antipodes.services.boundary_loader import LoadOutcome
from antipodes.services.hierarchy import HierarchyResolution, ResolutionStatus
from antipodes.utils.antipode import antipode, antipode_boundary, surface_distance_km
from antipodes.utils.geometry import boundary_center, boundary_from_ring, rectangle_ring

logger = structlog.get_logger(__name__)

NO_RESULT_AT_POINT = "Nothing to dig into here - no mapped place at this spot (open water?)."
NO_SEARCH_RESULT = "No place called \"{query}\" was found."
NO_LEVELS_WITH_OUTLINE = "No administrative levels found; showing the selected feature's outline."
NO_REGION_DATA = "No region data available for this place."
RESOLUTION_FAILED = "Could not work out the regions around this place. Please try again."

# Beijing, the landing view
DEFAULT_CENTER = Coordinate(lat=39.9042, lng=116.4074)

class ViewMode(str, Enum):
    SOURCE = "source"
    ANTI = "anti"

class InputMode(str, Enum):
    IDLE = "IDLE"
    DRAWING = "DRAWING"
    COOLDOWN = "COOLDOWN"

class ExplorerState(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: int = Field(0, description="Token of the latest top-level query.")
    status: ResolutionStatus = ResolutionStatus.IDLE
    message: Optional[str] = Field(None, description="User-facing status line.")
    view: ViewMode = ViewMode.SOURCE
    input_mode: InputMode = InputMode.IDLE
    cooldown_until: Optional[float] = None

    source_center: Coordinate = DEFAULT_CENTER
    source_boundary: Optional[Boundary] = None
    anti_center: Coordinate = Field(default_factory=lambda: antipode(DEFAULT_CENTER))
    anti_boundary: Optional[Boundary] = None
    dig_distance_km: Optional[float] = None

    hierarchy: Hierarchy = Hierarchy()
    active_level: Optional[str] = None
    loading_level: Optional[str] = None

# --- Queries ---

def begin_query(state: ExplorerState, center: Optional[Coordinate] = None) -> ExplorerState:
    """Start a click/search: new token, fresh empty hierarchy."""
    token = state.token + 1
    update = {
        "token": token,
        "status": ResolutionStatus.RESOLVING,
        "message": None,
        "view": ViewMode.SOURCE,
        "hierarchy": Hierarchy(token=token),
        "active_level": None,
        "loading_level": None,
    }
    if center is not None:
        update["source_center"] = center
    return state.model_copy(update=update)

def apply_no_result(state: ExplorerState, token: int, message: str) -> ExplorerState:
    if token != state.token:
        logger.debug("stale_response_dropped", token=token, current=state.token)
        return state
    return state.model_copy(update={
        "status": ResolutionStatus.EMPTY,
        "message": message,
        "source_boundary": None,
    })

def apply_resolution(
    state: ExplorerState,
    token: int,
    resolution: HierarchyResolution,
    boundary: Optional[Boundary],
    center: Optional[Coordinate] = None,
) -> ExplorerState:
    if token != state.token:
        logger.debug("stale_response_dropped", token=token, current=state.token)
        return state

    if resolution.status == ResolutionStatus.FAILED:
        message = RESOLUTION_FAILED
    elif not resolution.levels:
        message = NO_LEVELS_WITH_OUTLINE if boundary is not None else NO_REGION_DATA
    else:
        message = None

    update = {
        "status": resolution.status,
        "message": message,
        "source_boundary": boundary,
        "hierarchy": Hierarchy(token=token, levels=tuple(resolution.levels)),
    }
    if center is not None:
        update["source_center"] = center
    return state.model_copy(update=update)

# --- Level selection ---

def begin_level_load(state: ExplorerState, id_key: str) -> ExplorerState:
    return state.model_copy(update={"loading_level": id_key, "message": None})

def apply_boundary(state: ExplorerState, outcome: LoadOutcome) -> ExplorerState:
    """Commit a level load unless a newer query replaced the hierarchy meanwhile."""
    if outcome.token != state.hierarchy.token:
        logger.debug("stale_boundary_dropped", id_key=outcome.id_key, token=outcome.token,
                     current=state.hierarchy.token)
        return state

    update = {"loading_level": None}
    if not outcome.ok:
        update["message"] = outcome.error
        return state.model_copy(update=update)

    # Merge into the current sequence; another level may have loaded meanwhile.
    if outcome.fetched and outcome.level is not None:
        update["hierarchy"] = state.hierarchy.replace_level(outcome.level)
    update["source_boundary"] = outcome.boundary
    update["source_center"] = outcome.center or boundary_center(outcome.boundary)
    update["active_level"] = outcome.id_key
    update["message"] = None
    update["view"] = ViewMode.SOURCE
    return state.model_copy(update=update)

# --- Rectangle selection ---

def begin_selection(state: ExplorerState) -> ExplorerState:
    return state.model_copy(update={"input_mode": InputMode.DRAWING})

def cancel_selection(state: ExplorerState) -> ExplorerState:
    return state.model_copy(update={"input_mode": InputMode.IDLE, "cooldown_until": None})

def finish_selection(
    state: ExplorerState,
    south_west: Coordinate,
    north_east: Coordinate,
    now: float,
    cooldown: float,
) -> ExplorerState:
    """
    Use the drawn rectangle as the source region.

    The rectangle supersedes any in-flight query, so the token moves on.
    The map fires a click right after the mouse-up that ended the drag;
    COOLDOWN swallows it.
    """
    token = state.token + 1
    south = min(south_west.lat, north_east.lat)
    north = max(south_west.lat, north_east.lat)
    west = min(south_west.lng, north_east.lng)
    east = max(south_west.lng, north_east.lng)
    ring = rectangle_ring(Coordinate(lat=south, lng=west), Coordinate(lat=north, lng=east))
    return state.model_copy(update={
        "token": token,
        "status": ResolutionStatus.IDLE,
        "message": None,
        "view": ViewMode.SOURCE,
        "input_mode": InputMode.COOLDOWN,
        "cooldown_until": now + cooldown,
        "source_boundary": boundary_from_ring(ring),
        "source_center": Coordinate(lat=(north + south) / 2, lng=(west + east) / 2),
        "hierarchy": Hierarchy(token=token),
        "active_level": None,
        "loading_level": None,
    })

def settle_input_mode(state: ExplorerState, now: float) -> ExplorerState:
    """Expire a finished COOLDOWN back to IDLE."""
    if state.input_mode == InputMode.COOLDOWN and state.cooldown_until is not None and now >= state.cooldown_until:
        return state.model_copy(update={"input_mode": InputMode.IDLE, "cooldown_until": None})
    return state

def accepts_clicks(state: ExplorerState) -> bool:
    return state.input_mode == InputMode.IDLE

# --- Dig ---

def dig(state: ExplorerState) -> ExplorerState:
    """Map the source centre and region to the far side of the Earth."""
    anti_center = antipode(state.source_center)
    anti_boundary = antipode_boundary(state.source_boundary) if state.source_boundary is not None else None
    return state.model_copy(update={
        "view": ViewMode.ANTI,
        "anti_center": anti_center,
        "anti_boundary": anti_boundary,
        "dig_distance_km": round(surface_distance_km(state.source_center, anti_center), 1),
    })

def back_to_source(state: ExplorerState) -> ExplorerState:
    return state.model_copy(update={"view": ViewMode.SOURCE})
