"""
Image Cache Manager

File-based cache for transformed images with:
- Keys are transform digests, entries are sharded by key prefix
- zlib-compressed blobs, written atomically
- Configurable TTL and maximum aggregate size (LRU eviction)
"""

import asyncio
import json
import logging
import os
import tempfile
import time
import zlib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Metadata for a cached image."""
    content_type: str
    last_modified: str
    size_bytes: int
    created_at: float
    last_accessed: float


@dataclass
class CachedImage:
    """A cache hit: the stored bytes and how to serve them."""
    data: bytes
    content_type: str
    last_modified: str


class CacheStore(Protocol):
    """Contract the request handler needs from a cache backend."""

    async def get(self, key: str) -> Optional[CachedImage]:
        ...

    async def put(self, key: str, data: bytes, content_type: str, last_modified: str) -> bool:
        ...

    def get_stats(self) -> dict:
        ...


class ImageCacheManager:
    """
    Manages the disk cache of transformed images.

    Cache structure:
    cache_dir/
    ├── images/
    │   ├── 3f/
    │   │   └── 3f2a...e1.bin
    │   └── ...
    └── metadata.json
    """

    def __init__(
        self,
        cache_dir: str = "./diskcache",
        max_cache_size_mb: int = 500,
        cache_ttl_seconds: int = 365 * 24 * 60 * 60,  # 1 year
        max_image_size_mb: int = 50,
    ):
        self.cache_dir = Path(cache_dir)
        self.images_dir = self.cache_dir / "images"
        self.metadata_file = self.cache_dir / "metadata.json"

        self.max_cache_size_bytes = max_cache_size_mb * 1024 * 1024
        self.cache_ttl_seconds = cache_ttl_seconds
        self.max_image_size_bytes = max_image_size_mb * 1024 * 1024

        self._metadata: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

        self.hits = 0
        self.misses = 0

        self._init_cache_dir()
        self._load_metadata()

    def _init_cache_dir(self) -> None:
        """Create cache directories if they don't exist."""
        self.images_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[ImageCache] Cache directory: {self.cache_dir}")

    def _load_metadata(self) -> None:
        """Load metadata from disk."""
        if not self.metadata_file.exists():
            self._metadata = {}
            return
        try:
            with open(self.metadata_file, "r") as f:
                data = json.load(f)
            self._metadata = {k: CacheEntry(**v) for k, v in data.items()}
            logger.info(f"[ImageCache] Loaded {len(self._metadata)} cached entries")
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"[ImageCache] Failed to load metadata: {e}")
            self._metadata = {}

    def _save_metadata(self) -> None:
        """Save metadata to disk."""
        try:
            data = {k: asdict(v) for k, v in self._metadata.items()}
            self._atomic_write(self.metadata_file, json.dumps(data, indent=2).encode("utf-8"))
        except OSError as e:
            logger.error(f"[ImageCache] Failed to save metadata: {e}")

    @staticmethod
    def _atomic_write(path: Path, payload: bytes) -> None:
        # Readers never observe a half-written file; last writer wins
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _get_cache_path(self, key: str) -> Path:
        """Get the blob path for a cache key, sharded by its first two characters."""
        return self.images_dir / key[:2] / f"{key}.bin"

    def _get_total_cache_size(self) -> int:
        """Total stored (compressed) size of cached images."""
        return sum(entry.size_bytes for entry in self._metadata.values())

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.cache_ttl_seconds

    async def get(self, key: str) -> Optional[CachedImage]:
        """
        Get a cached image by key.

        Returns:
            CachedImage if cached and valid, None otherwise.
        """
        async with self._lock:
            entry = self._metadata.get(key)

            if entry is None:
                self.misses += 1
                return None

            if self._is_expired(entry, time.time()):
                logger.debug(f"[ImageCache] Cache expired: {key}")
                self._remove_entry(key)
                self._save_metadata()
                self.misses += 1
                return None

            cache_path = self._get_cache_path(key)
            try:
                with open(cache_path, "rb") as f:
                    data = zlib.decompress(f.read())
            except (OSError, zlib.error) as e:
                logger.warning(f"[ImageCache] Unreadable cache entry {key}: {e}")
                self._remove_entry(key)
                self._save_metadata()
                self.misses += 1
                return None

            # LRU tracking
            entry.last_accessed = time.time()
            self._save_metadata()

            self.hits += 1
            logger.debug(f"[ImageCache] Cache hit: {key}")
            return CachedImage(
                data=data,
                content_type=entry.content_type,
                last_modified=entry.last_modified,
            )

    async def put(self, key: str, data: bytes, content_type: str, last_modified: str) -> bool:
        """
        Cache a transformed image.

        Args:
            key: Cache key (transform digest)
            data: Encoded image bytes
            content_type: MIME type to serve the entry with
            last_modified: Origin Last-Modified captured at transform time

        Returns:
            True if cached successfully, False otherwise.
        """
        if len(data) > self.max_image_size_bytes:
            logger.warning(f"[ImageCache] Image too large to cache ({len(data)} bytes): {key}")
            return False

        compressed = zlib.compress(data)

        async with self._lock:
            # Replacing an entry frees its old space first
            self._remove_entry(key)
            self._ensure_space(len(compressed))

            try:
                self._atomic_write(self._get_cache_path(key), compressed)
            except OSError as e:
                logger.error(f"[ImageCache] Failed to cache {key}: {e}")
                self._save_metadata()
                return False

            now = time.time()
            self._metadata[key] = CacheEntry(
                content_type=content_type,
                last_modified=last_modified,
                size_bytes=len(compressed),
                created_at=now,
                last_accessed=now,
            )
            self._save_metadata()
            logger.debug(f"[ImageCache] Cached: {key} ({len(data)} bytes, {len(compressed)} stored)")
            return True

    def _remove_entry(self, key: str) -> None:
        """Remove a cache entry (file and metadata)."""
        entry = self._metadata.pop(key, None)
        if entry is None:
            return
        try:
            self._get_cache_path(key).unlink(missing_ok=True)
            logger.debug(f"[ImageCache] Removed: {key}")
        except OSError as e:
            logger.error(f"[ImageCache] Failed to remove file: {e}")

    def _ensure_space(self, needed_bytes: int) -> None:
        """Evict least recently used entries until needed_bytes fit."""
        current_size = self._get_total_cache_size()
        target_size = self.max_cache_size_bytes - needed_bytes

        if current_size <= target_size:
            return

        sorted_entries = sorted(self._metadata.items(), key=lambda x: x[1].last_accessed)

        for key, entry in sorted_entries:
            if current_size <= target_size:
                break
            current_size -= entry.size_bytes
            self._remove_entry(key)
            logger.info(f"[ImageCache] LRU evicted: {key}")

    def get_stats(self) -> dict:
        """Get cache statistics."""
        total_size = self._get_total_cache_size()
        lookups = self.hits + self.misses
        return {
            "total_entries": len(self._metadata),
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "max_size_mb": self.max_cache_size_bytes // (1024 * 1024),
            "usage_percent": round(total_size / self.max_cache_size_bytes * 100, 1) if self.max_cache_size_bytes > 0 else 0,
            "cache_ttl_days": self.cache_ttl_seconds // 86400,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate_percent": round(self.hits / lookups * 100, 2) if lookups else 0.0,
        }
