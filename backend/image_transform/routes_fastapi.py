"""
Image Transform API Routes

Provides endpoints for:
- Fetching, transforming and caching images (GET /)
- Request and cache statistics
- Health check
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from pydantic import BaseModel, Field

from .cache_keys import parse_transform_request
from .handler import TransformRequestHandler

router = APIRouter(tags=["Image Transform"])


# ============================================
# Response Models
# ============================================

class RequestStatsModel(BaseModel):
    """Request counters since process start"""
    total_requests: int
    greetings: int
    not_modified: int
    cache_hits: int
    cache_misses: int
    transforms: int
    shared_transforms: int = Field(..., description="Misses served by an in-flight transform")
    fetch_failures: int
    transform_failures: int
    cache_write_failures: int
    cache_hit_rate_percent: float


class CacheStatsModel(BaseModel):
    """Disk cache usage"""
    total_entries: int = 0
    total_size_bytes: int = 0
    total_size_mb: float = 0.0
    max_size_mb: int = 0
    usage_percent: float = 0.0
    cache_ttl_days: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate_percent: float = 0.0


class StatsResponse(BaseModel):
    """Response model for stats endpoint"""
    success: bool
    requests: RequestStatsModel
    cache: CacheStatsModel


class HealthResponse(BaseModel):
    """Response model for health endpoint"""
    status: str
    service: str
    cache_stats: CacheStatsModel


# ============================================
# Endpoints
# ============================================

def get_handler(request: Request) -> TransformRequestHandler:
    """The handler instance wired up by create_app()."""
    return request.app.state.transform_handler


@router.get("/")
async def transform_image(
    url: Optional[str] = Query(None, description="URL of the source image"),
    w: Optional[str] = Query(None, description="Target width, 1-2000"),
    h: Optional[str] = Query(None, description="Target height, 1-2000"),
    quality: Optional[str] = Query(None, description="Output quality 1-100 (default 94)"),
    output: Optional[str] = Query(None, description="Output format: png or jpeg (default)"),
    if_none_match: Optional[str] = Header(None),
    if_modified_since: Optional[str] = Header(None),
    handler: TransformRequestHandler = Depends(get_handler),
):
    """
    Serve a resized/re-encoded version of a remote image.

    Parameters are parsed leniently: invalid dimensions are ignored and
    quality is clamped, so this endpoint never rejects a query.

    Example:
        GET /?url=https://example.com/image.jpg&w=300&h=200&quality=80&output=png
    """
    req = parse_transform_request(url, w, h, quality, output)
    return await handler.handle(req, if_none_match, if_modified_since)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    response: Response,
    handler: TransformRequestHandler = Depends(get_handler),
):
    """
    Get request and cache statistics.

    Returns:
    - Request counters (304s, hits, misses, failures)
    - Cache size usage and configuration
    """
    response.headers["Cache-Control"] = "no-cache"
    return StatsResponse(
        success=True,
        requests=RequestStatsModel(**handler.stats.to_dict()),
        cache=CacheStatsModel(**handler.cache.get_stats()),
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(handler: TransformRequestHandler = Depends(get_handler)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        service="image-transform",
        cache_stats=CacheStatsModel(**handler.cache.get_stats()),
    )
