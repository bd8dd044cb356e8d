"""
Image Transform Module

On-demand image transformation proxy: fetches a remote image, resizes
and re-encodes it, and serves the result with HTTP caching semantics.

Features:
- Cache keys and ETags derived from the transform parameters
- 304 handling via If-None-Match
- Disk cache with TTL and size limit
- Streamed origin fetch, EXIF-aware resize (cover / contain), JPEG/PNG output
"""

from .routes_fastapi import router
from .cache_manager import ImageCacheManager
from .main import create_app

__all__ = ["router", "ImageCacheManager", "create_app"]
