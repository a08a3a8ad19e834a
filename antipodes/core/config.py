from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "Antipodes"
    VERSION: str = "0.1.0"
    BRIEF_DESCRIPTION: str = "Pick a place or region on the map and dig straight through the Earth to its antipode."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")

    # --- Nominatim (OpenStreetMap geocoder) ---
    NOMINATIM_BASE_URL: str = Field("https://nominatim.openstreetmap.org", description="Base URL of the Nominatim instance")
    NOMINATIM_USER_AGENT: str = Field("antipodes-explorer/0.1", description="User-Agent sent to Nominatim (required by its usage policy)")
    NOMINATIM_ACCEPT_LANGUAGE: str = Field("en-US,en;q=0.9", description="Preferred languages for place names")
    NOMINATIM_TIMEOUT: float = 10.0 # seconds
    NOMINATIM_MAX_RETRIES: int = 2
    NOMINATIM_INITIAL_BACKOFF: float = 1.0 # seconds

    # Reverse lookups resolve to building/street level
    REVERSE_ZOOM: int = 18
    SEARCH_LIMIT: int = 5

    # polygon_threshold is in degrees; batch lookups are country scale
    POLYGON_THRESHOLD_FINE: float = Field(0.001, description="Simplification tolerance for single reverse/search lookups")
    POLYGON_THRESHOLD_COARSE: float = Field(0.01, description="Simplification tolerance for batch boundary lookups")

    # --- Geometry ---
    RING_DOWNSAMPLE_THRESHOLD: int = 800
    RING_DOWNSAMPLE_TARGET: int = 500

    # --- Interaction timing ---
    CLICK_DEBOUNCE_MS: int = 500
    SELECTION_COOLDOWN_MS: int = 300

    # --- Quota (optional, Redis backed) ---
    ENABLE_REDIS: bool = Field(False, description="Feature flag for Redis")
    REDIS_URL: Optional[str] = Field(None, description="Redis URL for per-client geocoding quota")
    MAX_DAILY_GEOCODE_ACTIONS: int = Field(500, description="Upstream-hitting actions allowed per client per day")
    QUOTA_TTL_SECONDS: int = 86400

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
