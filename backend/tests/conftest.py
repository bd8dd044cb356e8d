"""
Image Transform 测试配置文件

这个文件包含 pytest fixtures（测试夹具）：
- 用 Pillow 生成测试图片
- 用 httpx.MockTransport 模拟源站（origin）
- 用 httpx.ASGITransport 直接调用 FastAPI 应用，不需要真实端口
"""

import asyncio
import sys
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest
from PIL import Image

# 添加 backend 目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from image_transform.cache_manager import CachedImage, ImageCacheManager
from image_transform.config import ServiceConfig
from image_transform.fetcher import OriginFetcher
from image_transform.main import create_app

ORIGIN_LAST_MODIFIED = "Wed, 21 Oct 2015 07:28:00 GMT"


# ============================================
# 测试图片
# ============================================

def make_image_bytes(
    size=(200, 100),
    fmt: str = "JPEG",
    mode: str = "RGB",
    exif_orientation: Optional[int] = None,
) -> bytes:
    """
    生成一张测试图片。

    左半边红色、右半边蓝色，方便肉眼检查裁剪方向。
    """
    color = (255, 0, 0, 128) if mode == "RGBA" else (255, 0, 0)
    img = Image.new(mode, size, color)
    right = Image.new(mode, (size[0] // 2, size[1]), (0, 0, 255, 255) if mode == "RGBA" else (0, 0, 255))
    img.paste(right, (size[0] // 2, 0))

    buf = BytesIO()
    save_kwargs = {"format": fmt}
    if exif_orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = exif_orientation
        save_kwargs["exif"] = exif
    img.save(buf, **save_kwargs)
    return buf.getvalue()


def open_image(data: bytes) -> Image.Image:
    return Image.open(BytesIO(data))


async def iter_chunks(data: bytes, chunk_size: int = 256):
    """把字节切成小块，模拟网络流。"""
    for i in range(0, len(data), chunk_size):
        yield data[i:i + chunk_size]


# ============================================
# 模拟源站
# ============================================

@dataclass
class OriginRoute:
    body: bytes = b""
    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[Exception] = None
    head_error: Optional[Exception] = None
    # chunked: 不带 Content-Length 的流式响应；body_error: 发送第一块后抛出
    chunked: bool = False
    body_error: Optional[Exception] = None


class FakeOrigin:
    """
    httpx.MockTransport 的请求处理器。

    记录每个请求，可以设置延迟来制造并发重叠。
    """

    def __init__(self):
        self.routes: Dict[str, OriginRoute] = {}
        self.requests: List[httpx.Request] = []
        self.delay = 0.0

    def add(self, url: str, body: bytes = b"", **kwargs) -> OriginRoute:
        route = OriginRoute(body=body, **kwargs)
        self.routes[url] = route
        return route

    def count(self, method: str) -> int:
        return sum(1 for r in self.requests if r.method == method)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, content=b"not found")

        error = route.head_error if request.method == "HEAD" else route.error
        if error is not None:
            raise error

        if request.method == "HEAD":
            return httpx.Response(route.status, headers=route.headers)
        if route.chunked or route.body_error is not None:
            return httpx.Response(route.status, headers=route.headers, content=self._stream(route))
        return httpx.Response(route.status, headers=route.headers, content=route.body)

    @staticmethod
    async def _stream(route: OriginRoute):
        for i in range(0, len(route.body), 256):
            yield route.body[i:i + 256]
            if route.body_error is not None:
                raise route.body_error


class MemoryCache:
    """内存版 CacheStore，用于替换磁盘缓存。"""

    def __init__(self, fail_puts: bool = False):
        self.entries: Dict[str, CachedImage] = {}
        self.fail_puts = fail_puts
        self.put_calls = 0

    async def get(self, key: str) -> Optional[CachedImage]:
        return self.entries.get(key)

    async def put(self, key: str, data: bytes, content_type: str, last_modified: str) -> bool:
        self.put_calls += 1
        if self.fail_puts:
            raise OSError("disk full")
        self.entries[key] = CachedImage(data=data, content_type=content_type, last_modified=last_modified)
        return True

    def get_stats(self) -> dict:
        return {"total_entries": len(self.entries)}


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def sample_jpeg() -> bytes:
    return make_image_bytes()


@pytest.fixture
def origin() -> FakeOrigin:
    return FakeOrigin()


@pytest.fixture
def fetcher(origin):
    """指向模拟源站的 OriginFetcher。"""
    client = httpx.AsyncClient(transport=httpx.MockTransport(origin))
    return OriginFetcher(timeout=5.0, max_source_bytes=5 * 1024 * 1024, http_client=client)


@pytest.fixture
def config(tmp_path) -> ServiceConfig:
    return ServiceConfig(cache_dir=str(tmp_path / "diskcache"))


@pytest.fixture
def disk_cache(config) -> ImageCacheManager:
    return ImageCacheManager(
        cache_dir=config.cache_dir,
        max_cache_size_mb=config.max_cache_size_mb,
        cache_ttl_seconds=config.cache_ttl_seconds,
        max_image_size_mb=config.max_image_size_mb,
    )


@pytest.fixture
def app(config, disk_cache, fetcher):
    return create_app(config, cache=disk_cache, fetcher=fetcher)


@pytest.fixture
async def client(app):
    """
    直接对 ASGI 应用发请求的 httpx 客户端。

    使用方式：
    ```python
    async def test_greeting(client):
        response = await client.get("/")
        assert response.status_code == 200
    ```
    """
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
