"""
Origin Fetcher

Retrieves source images over HTTP:
- Best-effort Last-Modified lookup via HEAD (never fails)
- Streamed GET of the body with a bounded timeout and size cap
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

from .conditional import http_date
from .errors import OriginFetchError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "image/*,*/*;q=0.8",
}


@dataclass
class OriginMetadata:
    """What we know about the source image besides its bytes."""
    last_modified: str
    from_origin: bool = False


class OriginFetcher:
    """
    Fetches source images from their origin.

    Usage:
        fetcher = OriginFetcher(timeout=10.0)
        metadata = await fetcher.fetch_metadata(url)
        async with fetcher.open_stream(url) as chunks:
            async for chunk in chunks:
                ...
    """

    def __init__(
        self,
        timeout: float = 10.0,
        max_source_bytes: int = 50 * 1024 * 1024,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self.max_source_bytes = max_source_bytes
        self.http_client = http_client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers=DEFAULT_HEADERS,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.http_client.aclose()

    async def fetch_metadata(self, url: str) -> OriginMetadata:
        """
        Look up the origin's Last-Modified header.

        Any failure falls back to the current time; the header is cosmetic.
        """
        try:
            response = await self.http_client.head(url, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            # ValueError covers hosts that fail IDNA encoding (idna.IDNAError)
            logger.debug(f"[OriginFetcher] HEAD failed for {url[:60]}: {e}")
            return OriginMetadata(last_modified=http_date())

        last_modified = response.headers.get("last-modified")
        if response.is_success and last_modified:
            return OriginMetadata(last_modified=last_modified, from_origin=True)
        return OriginMetadata(last_modified=http_date())

    async def _send(self, url: str) -> httpx.Response:
        try:
            request = self.http_client.build_request("GET", url, timeout=self.timeout)
            return await self.http_client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise OriginFetchError("Image fetch timeout") from e
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise OriginFetchError(f"Failed to fetch image: {e}") from e

    @asynccontextmanager
    async def open_stream(self, url: str) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Open a streamed GET for the source image.

        Yields an async iterator over body chunks. Every transport-level
        problem, including ones hit while iterating, raises OriginFetchError.
        Exceptions raised by the caller inside the block pass through as-is.
        """
        response = await self._send(url)
        try:
            if not response.is_success:
                raise OriginFetchError(f"HTTP {response.status_code}")

            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > self.max_source_bytes:
                raise OriginFetchError(f"Image too large ({declared} bytes)")

            logger.info(f"[OriginFetcher] Streaming: {url[:80]}")
            yield self._iter_body(response)
        finally:
            await response.aclose()

    async def _iter_body(self, response: httpx.Response) -> AsyncIterator[bytes]:
        received = 0
        try:
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > self.max_source_bytes:
                    raise OriginFetchError(f"Image too large (over {self.max_source_bytes} bytes)")
                yield chunk
        except httpx.TimeoutException as e:
            raise OriginFetchError("Image fetch timeout") from e
        except httpx.HTTPError as e:
            raise OriginFetchError(f"Failed to read image body: {e}") from e
