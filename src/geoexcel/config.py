"""Configuration management using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables (GEOEXCEL_*)."""

    model_config = SettingsConfigDict(
        env_prefix="GEOEXCEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # External lookups (OpenStreetMap Nominatim, 1 request/second policy)
    nominatim_reverse_url: str = "https://nominatim.openstreetmap.org/reverse"
    nominatim_search_url: str = "https://nominatim.openstreetmap.org/search"
    user_agent: str = "GeoExcelMapper/1.0"
    request_timeout: float = 10.0

    # Sentinel labels
    unspecified_label: str = "unspecified"   # missing/empty category value
    unknown_label: str = "unknown"           # geocoder found nothing
    error_label: str = "error"               # geocoder request failed

    # Enrichment
    enrichment_field: str = "area"
    enrichment_cap: int = 500
    enrichment_delay: float = 1.1   # seconds between lookups
    enrichment_batch_size: int = 5  # publish progress every N records

    # Geocoding / search
    geocode_cache_radius_m: float = 200.0
    search_limit: int = 50

    # Layer defaults
    default_center_lat: float = 30.0444
    default_center_lng: float = 31.2357
    default_color: str = "#3b82f6"
    default_shape: str = "circle"
    default_point_size: int = 12


settings = Settings()
