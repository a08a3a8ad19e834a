# antipodes/api/routes.py
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
import structlog

from antipodes.core.config import settings
from antipodes.models.dto import (
    AntipodeResponse,
    ClickRequest,
    Coordinate,
    ErrorResponse,
    GeometryRequest,
    GeometryResponse,
    SearchRequest,
    SelectionRequest,
)
from antipodes.services.explorer import AntipodeExplorer, UnknownLevelError
from antipodes.services.explorer_state import ExplorerState
from antipodes.services.quota_repository import QuotaRepository, QuotaUnavailableError, daily_quota_key
from antipodes.utils.antipode import antipode, antipode_boundary, surface_distance_km
from antipodes.utils.geometry import boundary_from_geojson, boundary_to_geojson

router = APIRouter()
logger = structlog.get_logger(__name__)

# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------
def get_explorer(request: Request) -> AntipodeExplorer:
    return request.app.state.explorers.get(request.state.session_id)

async def enforce_geocode_quota(request: Request) -> None:
    """Spend one unit of the client's daily Nominatim budget (when Redis is on)."""
    if not settings.ENABLE_REDIS:
        return
    quota: QuotaRepository = request.app.state.quota
    try:
        allowed, _ = await quota.check_and_consume(
            daily_quota_key(request.state.session_id),
            settings.MAX_DAILY_GEOCODE_ACTIONS,
            settings.QUOTA_TTL_SECONDS,
        )
    except QuotaUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=ErrorResponse(
                error="QUOTA_ENFORCEMENT_UNAVAILABLE",
                detail="Geocoding is temporarily unavailable.",
            ).model_dump(),
        )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=ErrorResponse(
                error="DAILY_GEOCODE_LIMIT_EXCEEDED",
                detail="You have explored a lot today. Please come back tomorrow.",
                retry_after_seconds=settings.QUOTA_TTL_SECONDS,
            ).model_dump(),
        )

# ----------------------------------------------------------------------
# Stateless transforms
# ----------------------------------------------------------------------
@router.get("/antipode", response_model=AntipodeResponse)
async def get_antipode(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
):
    source = Coordinate(lat=lat, lng=lng)
    anti = antipode(source)
    return AntipodeResponse(source=source, antipode=anti, distance_km=round(surface_distance_km(source, anti), 1))

@router.post(
    "/antipode/geometry",
    response_model=GeometryResponse,
    responses={400: {"model": ErrorResponse}},
)
async def post_antipode_geometry(data: GeometryRequest):
    """Antipode of a GeoJSON Polygon/MultiPolygon, returned in GeoJSON order."""
    boundary = boundary_from_geojson(data.geometry)
    if boundary is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ErrorResponse(
                error="UNSUPPORTED_GEOMETRY",
                detail="Only non-empty Polygon and MultiPolygon geometries are supported.",
            ).model_dump(),
        )
    return GeometryResponse(geometry=boundary_to_geojson(antipode_boundary(boundary)))

# ----------------------------------------------------------------------
# Explorer session
# ----------------------------------------------------------------------
@router.get("/state", response_model=ExplorerState)
async def get_state(explorer: AntipodeExplorer = Depends(get_explorer)):
    return explorer.state

@router.post(
    "/click",
    response_model=ExplorerState,
    dependencies=[Depends(enforce_geocode_quota)],
    responses={429: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def click(data: ClickRequest, explorer: AntipodeExplorer = Depends(get_explorer)):
    return await explorer.click(data.lat, data.lng)

@router.post(
    "/search",
    response_model=ExplorerState,
    dependencies=[Depends(enforce_geocode_quota)],
    responses={429: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def search(data: SearchRequest, explorer: AntipodeExplorer = Depends(get_explorer)):
    return await explorer.search(data.query.strip())

@router.post(
    "/levels/{id_key}",
    response_model=ExplorerState,
    responses={404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def select_level(
    id_key: str,
    request: Request,
    explorer: AntipodeExplorer = Depends(get_explorer),
):
    level = explorer.state.hierarchy.find(id_key)
    if level is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(
                error="UNKNOWN_LEVEL",
                detail=f"Level {id_key} is not part of the current hierarchy.",
            ).model_dump(),
        )
    # Cached boundaries cost nothing upstream
    if not level.loaded:
        await enforce_geocode_quota(request)
    try:
        return await explorer.select_level(id_key)
    except UnknownLevelError:
        # Replaced by a newer query while the quota check ran
        logger.info("level_superseded", id_key=id_key)
        return explorer.state

@router.post("/selection/start", response_model=ExplorerState)
async def selection_start(explorer: AntipodeExplorer = Depends(get_explorer)):
    return explorer.begin_selection()

@router.post("/selection/finish", response_model=ExplorerState)
async def selection_finish(data: SelectionRequest, explorer: AntipodeExplorer = Depends(get_explorer)):
    return explorer.finish_selection(data.south_west, data.north_east)

@router.post("/selection/cancel", response_model=ExplorerState)
async def selection_cancel(explorer: AntipodeExplorer = Depends(get_explorer)):
    return explorer.cancel_selection()

@router.post("/dig", response_model=ExplorerState)
async def dig(explorer: AntipodeExplorer = Depends(get_explorer)):
    return explorer.dig()

@router.post("/surface", response_model=ExplorerState)
async def surface(explorer: AntipodeExplorer = Depends(get_explorer)):
    return explorer.back_to_source()
