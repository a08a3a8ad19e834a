from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Tuple

# --- Geometry ---

class Coordinate(BaseModel):
    """A point on the globe in degrees."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90, description="Latitude.")
    lng: float = Field(..., ge=-180, le=180, description="Longitude.")

class GeoJSONGeometry(BaseModel):
    """GeoJSON geometry exactly as Nominatim sends it ([lng, lat] leaves)."""
    type: str = Field(..., description="GeoJSON geometry type.")
    coordinates: Any = Field(None, description="Nested coordinate arrays.")

# polygon -> ring -> (lat, lng)
LatLngRing = List[Tuple[float, float]]

class Boundary(BaseModel):
    """Internal [lat, lng] geometry, parsed once at the service boundary."""
    model_config = ConfigDict(frozen=True)

    polygons: List[List[LatLngRing]] = Field(..., description="Polygons, each a list of closed rings.")

    @property
    def rings(self) -> List[LatLngRing]:
        return [ring for polygon in self.polygons for ring in polygon]

# --- Nominatim payloads (consumed read-only) ---

def make_id_key(osm_type: str, osm_id: Any) -> str:
    """'relation', 51477 -> 'R51477'. Also accepts the single-letter form."""
    return f"{str(osm_type)[0].upper()}{osm_id}"

class GeocodeResult(BaseModel):
    """One Nominatim place from /reverse, /search or /lookup."""
    model_config = ConfigDict(extra="ignore")

    osm_id: Optional[int] = None
    osm_type: Optional[str] = Field(None, description="node, way or relation.")
    display_name: str = ""
    category: Optional[str] = Field(None, validation_alias=AliasChoices("class", "category"))
    type: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    address: Dict[str, str] = Field(default_factory=dict)
    geojson: Optional[GeoJSONGeometry] = None
    boundingbox: Optional[List[str]] = Field(None, description="[southLat, northLat, westLng, eastLng] as strings.")

    @property
    def has_identity(self) -> bool:
        return self.osm_id is not None and bool(self.osm_type)

    @property
    def id_key(self) -> str:
        return make_id_key(self.osm_type, self.osm_id)

class AddressPart(BaseModel):
    """One containing feature from the /details address breakdown."""
    model_config = ConfigDict(extra="ignore")

    osm_id: Optional[int] = None
    osm_type: Optional[str] = None
    category: Optional[str] = Field(None, validation_alias=AliasChoices("class", "category"))
    type: Optional[str] = None
    admin_level: Optional[int] = None
    localname: Optional[str] = None
    name: Optional[str] = None
    rank_address: Optional[int] = None
    isaddress: Optional[bool] = None

    @property
    def label(self) -> Optional[str]:
        return self.localname or self.name

class PlaceDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: List[AddressPart] = Field(default_factory=list)

# --- Hierarchy ---

class HierarchyLevel(BaseModel):
    """One administrative tier the user can jump to."""
    model_config = ConfigDict(frozen=True)

    name: str
    osm_id: str
    osm_type: str
    id_key: str = Field(..., description="Type letter + OSM id, e.g. R51477.")
    geojson: Optional[GeoJSONGeometry] = None
    loaded: bool = False
    center: Optional[Coordinate] = None

class Hierarchy(BaseModel):
    """Levels produced by one click/search, most specific first."""
    model_config = ConfigDict(frozen=True)

    token: int = Field(0, description="Query token that produced this sequence.")
    levels: Tuple[HierarchyLevel, ...] = ()

    def find(self, id_key: str) -> Optional[HierarchyLevel]:
        for level in self.levels:
            if level.id_key == id_key:
                return level
        return None

    def replace_level(self, updated: HierarchyLevel) -> "Hierarchy":
        """Swap in one level by id_key; siblings are carried over untouched."""
        levels = tuple(updated if level.id_key == updated.id_key else level for level in self.levels)
        return self.model_copy(update={"levels": levels})

# --- API Request Models ---

class ClickRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90, description="Clicked latitude.")
    lng: float = Field(..., ge=-180, le=180, description="Clicked longitude.")

class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=256, description="Free-text place name.")

class SelectionRequest(BaseModel):
    """Rectangle corners as the map reports them."""
    south_west: Coordinate
    north_east: Coordinate

class GeometryRequest(BaseModel):
    geometry: GeoJSONGeometry

# --- API Response Models ---

class AntipodeResponse(BaseModel):
    source: Coordinate
    antipode: Coordinate
    distance_km: float = Field(..., description="Great-circle distance between the two points.")

class GeometryResponse(BaseModel):
    geometry: GeoJSONGeometry

# --- Error Response Model ---

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
    retry_after_seconds: Optional[int] = Field(None, description="Time until retry is allowed (for rate-limiting).")
