"""
Request Handler

Drives one image request through the pipeline:

    no url        -> greeting
    derive key    -> ETag matches       -> 304
                  -> cache hit          -> 200 (cached bytes)
                  -> HEAD origin        (best effort)
                  -> GET origin         -> failure: 400
                  -> transform          -> failure: 500
                  -> cache put          (best effort)
                  -> 200 (fresh bytes)

With single-flight enabled, concurrent misses for the same key share one
fetch+transform+store run instead of each doing the work.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from fastapi.responses import Response

from .cache_keys import TransformRequest, derive_cache_key
from .cache_manager import CacheStore
from .conditional import is_not_modified, not_modified_last_modified
from .errors import OriginFetchError, TransformError
from .fetcher import OriginFetcher
from .responses import (
    FETCH_FAILED_TEXT,
    TRANSFORM_FAILED_TEXT,
    error_response,
    greeting_response,
    image_response,
    not_modified_response,
)
from .transformer import TransformPipeline

logger = logging.getLogger(__name__)


@dataclass
class RequestStats:
    """Counters exposed on /stats."""
    total_requests: int = 0
    greetings: int = 0
    not_modified: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    transforms: int = 0
    shared_transforms: int = 0
    fetch_failures: int = 0
    transform_failures: int = 0
    cache_write_failures: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        lookups = self.cache_hits + self.cache_misses
        data["cache_hit_rate_percent"] = round(self.cache_hits / lookups * 100, 2) if lookups else 0.0
        return data


@dataclass
class ProducedImage:
    """Freshly transformed output, ready to send."""
    data: bytes
    content_type: str
    last_modified: str


class TransformRequestHandler:
    """
    Orchestrates key derivation, conditional requests, cache and transform.

    All collaborators are injected so tests can substitute any of them.
    """

    def __init__(
        self,
        cache: CacheStore,
        fetcher: OriginFetcher,
        pipeline: Optional[TransformPipeline] = None,
        single_flight: bool = True,
    ):
        self.cache = cache
        self.fetcher = fetcher
        self.pipeline = pipeline or TransformPipeline()
        self.single_flight = single_flight
        self.stats = RequestStats()
        self._in_flight: dict[str, asyncio.Task] = {}

    async def handle(
        self,
        req: Optional[TransformRequest],
        if_none_match: Optional[str] = None,
        if_modified_since: Optional[str] = None,
    ) -> Response:
        self.stats.total_requests += 1

        if req is None:
            self.stats.greetings += 1
            return greeting_response()

        cache_key = derive_cache_key(req)

        if is_not_modified(if_none_match, cache_key.etag):
            self.stats.not_modified += 1
            return not_modified_response(
                cache_key.etag,
                not_modified_last_modified(if_modified_since),
            )

        cached = await self.cache.get(cache_key.key)
        if cached is not None:
            self.stats.cache_hits += 1
            logger.debug(f"[ImageTransform] Cache hit: {req.source_url[:60]} ({cache_key.key})")
            return image_response(
                cached.data,
                cached.content_type,
                cache_key.etag,
                cached.last_modified,
                cache_hit=True,
            )

        self.stats.cache_misses += 1

        try:
            produced = await self._produce(req, cache_key.key)
        except OriginFetchError as e:
            self.stats.fetch_failures += 1
            logger.error(f"[ImageTransform] Fetch failed: {req.source_url[:60]} - {e}")
            return error_response(400, FETCH_FAILED_TEXT)
        except TransformError as e:
            self.stats.transform_failures += 1
            logger.error(f"[ImageTransform] Transform failed: {req.source_url[:60]} - {e}")
            return error_response(500, TRANSFORM_FAILED_TEXT)

        return image_response(
            produced.data,
            produced.content_type,
            cache_key.etag,
            produced.last_modified,
            cache_hit=False,
        )

    async def _produce(self, req: TransformRequest, key: str) -> ProducedImage:
        if not self.single_flight:
            return await self._fetch_transform_store(req, key)

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_transform_store(req, key))
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._finish_flight(key, t))
        else:
            self.stats.shared_transforms += 1
            logger.debug(f"[ImageTransform] Joining in-flight transform: {key}")

        # A disconnecting caller must not cancel work other callers await
        return await asyncio.shield(task)

    def _finish_flight(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter went away
            task.exception()

    async def _fetch_transform_store(self, req: TransformRequest, key: str) -> ProducedImage:
        metadata = await self.fetcher.fetch_metadata(req.source_url)

        async with self.fetcher.open_stream(req.source_url) as chunks:
            result = await self.pipeline.transform(chunks, req)
        self.stats.transforms += 1

        try:
            stored = await self.cache.put(key, result.data, result.content_type, metadata.last_modified)
        except Exception as e:
            logger.warning(f"[ImageTransform] Cache write failed for {key}: {e}")
            stored = False
        if not stored:
            self.stats.cache_write_failures += 1

        return ProducedImage(
            data=result.data,
            content_type=result.content_type,
            last_modified=metadata.last_modified,
        )
