"""
Application bootstrap

Wires configuration, the disk cache, the origin fetcher and the router
into a FastAPI app, and runs it with uvicorn.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request

from .cache_manager import CacheStore, ImageCacheManager
from .config import ServiceConfig
from .fetcher import OriginFetcher
from .handler import TransformRequestHandler
from .responses import CORS_HEADERS, preflight_response
from .routes_fastapi import router
from .transformer import TransformPipeline

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[ServiceConfig] = None,
    cache: Optional[CacheStore] = None,
    fetcher: Optional[OriginFetcher] = None,
    pipeline: Optional[TransformPipeline] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Any collaborator not passed in is created from the configuration.
    """
    config = config or ServiceConfig.from_env()

    if cache is None:
        cache = ImageCacheManager(
            cache_dir=config.cache_dir,
            max_cache_size_mb=config.max_cache_size_mb,
            cache_ttl_seconds=config.cache_ttl_seconds,
            max_image_size_mb=config.max_image_size_mb,
        )

    owns_fetcher = fetcher is None
    if fetcher is None:
        fetcher = OriginFetcher(
            timeout=config.fetch_timeout_seconds,
            max_source_bytes=config.max_image_size_bytes,
        )

    handler = TransformRequestHandler(
        cache=cache,
        fetcher=fetcher,
        pipeline=pipeline,
        single_flight=config.single_flight,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_fetcher:
            await fetcher.close()

    app = FastAPI(title="Image Transform Service", lifespan=lifespan)
    app.state.config = config
    app.state.transform_handler = handler

    @app.middleware("http")
    async def cors_middleware(request: Request, call_next):
        # Preflight for any path, before routing
        if request.method == "OPTIONS":
            return preflight_response()
        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.include_router(router)
    return app


def main() -> None:
    config = ServiceConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(config)
    logger.info(f"[ImageTransform] http server is running on port:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
