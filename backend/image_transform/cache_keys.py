"""
Cache Key Derivation

Turns query parameters into a normalized TransformRequest and derives
the cache key (md5 over the canonical parameter string) and the HTTP
entity tag served for it.
"""

import base64
import hashlib
import re
from dataclasses import dataclass
from typing import NamedTuple, Optional

MAX_DIM = 2000
DEFAULT_QUALITY = 94

FORMAT_JPEG = "jpeg"
FORMAT_PNG = "png"

# ASCII digits only; other Unicode digits do not count as a number
_INT_PREFIX = re.compile(r"^\s*([+-]?[0-9]+)")


@dataclass(frozen=True)
class TransformRequest:
    """Normalized transformation parameters for one source image."""
    source_url: str
    width: Optional[int] = None
    height: Optional[int] = None
    quality: int = DEFAULT_QUALITY
    output_format: str = FORMAT_JPEG

    @property
    def content_type(self) -> str:
        return "image/png" if self.output_format == FORMAT_PNG else "image/jpeg"


class CacheKey(NamedTuple):
    key: str
    etag: str


def parse_int(value: Optional[str]) -> Optional[int]:
    """
    Lenient integer parsing: leading sign and digits, trailing junk ignored.

    "100px" -> 100, "abc" -> None, None -> None
    """
    if value is None:
        return None
    match = _INT_PREFIX.match(value)
    if not match:
        return None
    return int(match.group(1))


def _dimension(value: Optional[str]) -> Optional[int]:
    # Out-of-range values are dropped, not clamped
    parsed = parse_int(value)
    if parsed is None or parsed <= 0 or parsed > MAX_DIM:
        return None
    return parsed


def _quality(value: Optional[str]) -> int:
    parsed = parse_int(value)
    if not parsed:
        return DEFAULT_QUALITY
    return min(max(parsed, 1), 100)


def parse_transform_request(
    url: Optional[str],
    w: Optional[str] = None,
    h: Optional[str] = None,
    quality: Optional[str] = None,
    output: Optional[str] = None,
) -> Optional[TransformRequest]:
    """
    Build a TransformRequest from raw query values.

    Returns None when no source URL was given.
    """
    if not url:
        return None
    return TransformRequest(
        source_url=url,
        width=_dimension(w),
        height=_dimension(h),
        quality=_quality(quality),
        output_format=FORMAT_PNG if output == FORMAT_PNG else FORMAT_JPEG,
    )


def canonical_string(req: TransformRequest) -> str:
    """url-width-height-quality-format, absent dimensions as empty strings."""
    width = "" if req.width is None else str(req.width)
    height = "" if req.height is None else str(req.height)
    return f"{req.source_url}-{width}-{height}-{req.quality}-{req.output_format}"


def entity_tag(entity: str) -> str:
    """
    Strong entity tag for a string entity.

    Format: "<hex byte length>-<27 chars of base64 sha1>"
    """
    raw = entity.encode("utf-8")
    digest = base64.b64encode(hashlib.sha1(raw).digest()).decode("ascii")[:27]
    return f'"{len(raw):x}-{digest}"'


def derive_cache_key(req: TransformRequest) -> CacheKey:
    """Derive the cache key and its entity tag for a request."""
    key = hashlib.md5(canonical_string(req).encode("utf-8")).hexdigest()
    return CacheKey(key=key, etag=entity_tag(key))
