"""
Service Configuration

All settings are read from environment variables with safe defaults,
so the service starts without any configuration file.
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


@dataclass
class ServiceConfig:
    """Runtime configuration for the image transform service."""
    # Listener
    host: str = "0.0.0.0"
    port: int = 3000

    # Disk cache
    cache_dir: str = "./diskcache"
    max_cache_size_mb: int = 500
    cache_ttl_days: int = 365
    max_image_size_mb: int = 50     # Per-entry limit, applies to source and output

    # Origin
    fetch_timeout_seconds: float = 10.0

    # Collapse concurrent misses for the same key into one transform
    single_flight: bool = True

    log_level: str = "INFO"

    @property
    def cache_ttl_seconds(self) -> int:
        return self.cache_ttl_days * 24 * 60 * 60

    @property
    def max_image_size_bytes(self) -> int:
        return self.max_image_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Build configuration from environment variables."""
        # SERVER_PORT takes precedence over PORT
        port = os.getenv("SERVER_PORT") or os.getenv("PORT") or "3000"
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(port),
            cache_dir=os.getenv("IMAGE_CACHE_DIR", "./diskcache"),
            max_cache_size_mb=int(os.getenv("IMAGE_CACHE_MAX_SIZE_MB", "500")),
            cache_ttl_days=int(os.getenv("IMAGE_CACHE_TTL_DAYS", "365")),
            max_image_size_mb=int(os.getenv("IMAGE_MAX_SIZE_MB", "50")),
            fetch_timeout_seconds=float(os.getenv("FETCH_TIMEOUT_SECONDS", "10")),
            single_flight=_env_bool("IMAGE_SINGLE_FLIGHT", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
