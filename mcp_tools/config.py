import os
from typing import Final


class _Config:
    def __init__(self) -> None:
        # Security / limits
        self.api_key: str | None = os.getenv("MCP_API_KEY")
        self.rate_limit: str = os.getenv("MCP_RATE_LIMIT", "60/minute")

        # HTTP behavior
        self.user_agent: str = os.getenv("MCP_USER_AGENT", "CityDayPlanner-MCP-Tool")
        try:
            self.http_timeout_sec: float = float(os.getenv("HTTP_TIMEOUT_SEC", "10"))
        except ValueError:
            self.http_timeout_sec = 10.0

        # Geocoding / places
        try:
            self.geocode_cache_size: int = int(os.getenv("GEOCODE_CACHE_SIZE", "256"))
        except ValueError:
            self.geocode_cache_size = 256
        try:
            self.places_radius_m: int = int(os.getenv("PLACES_RADIUS_M", "5000"))
        except ValueError:
            self.places_radius_m = 5000

        # External API bases
        self.nominatim_base: str = os.getenv("NOMINATIM_BASE", "https://nominatim.openstreetmap.org")
        self.open_meteo_base: str = os.getenv("OPEN_METEO_BASE", "https://api.open-meteo.com/v1/forecast")
        self.open_meteo_air_base: str = os.getenv(
            "OPEN_METEO_AIR_BASE", "https://air-quality-api.open-meteo.com/v1/air-quality"
        )
        self.nager_base: str = os.getenv("NAGER_BASE", "https://date.nager.at/api/v3")


CONFIG: Final[_Config] = _Config()
