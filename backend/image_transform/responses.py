"""
Response Composition

Builds every response the service emits. All of them carry the CORS
headers, including 304s and errors.
"""

from typing import Dict

from fastapi.responses import PlainTextResponse, Response

IMAGE_CACHE_CONTROL = "public, max-age=31536000"  # 1 year
GREETING_CACHE_CONTROL = "public, max-age=3600"

GREETING_TEXT = "Hello, 世界！这是一个简单的图片转换服务。"
FETCH_FAILED_TEXT = "Failed to fetch image"
TRANSFORM_FAILED_TEXT = "Failed to transform image"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _with_cors(headers: Dict[str, str]) -> Dict[str, str]:
    return {**headers, **CORS_HEADERS}


def image_response(
    data: bytes,
    content_type: str,
    etag: str,
    last_modified: str,
    cache_hit: bool,
) -> Response:
    """200 with the full encoded image."""
    return Response(
        content=data,
        media_type=content_type,
        headers=_with_cors({
            "ETag": etag,
            "Last-Modified": last_modified,
            "Cache-Control": IMAGE_CACHE_CONTROL,
            "X-Cache": "HIT" if cache_hit else "MISS",
        }),
    )


def not_modified_response(etag: str, last_modified: str) -> Response:
    """304 without a body."""
    return Response(
        status_code=304,
        headers=_with_cors({
            "ETag": etag,
            "Last-Modified": last_modified,
        }),
    )


def greeting_response() -> Response:
    """Informational reply for requests without a source URL."""
    return PlainTextResponse(
        GREETING_TEXT,
        headers=_with_cors({"Cache-Control": GREETING_CACHE_CONTROL}),
    )


def error_response(status_code: int, message: str) -> Response:
    return PlainTextResponse(message, status_code=status_code, headers=_with_cors({}))


def preflight_response() -> Response:
    """204 answer to CORS preflight requests."""
    return Response(status_code=204, headers=dict(CORS_HEADERS))
