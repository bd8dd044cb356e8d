"""
Transform Pipeline

Decodes a streamed source image and produces the requested output:
1. Incremental decode while chunks arrive (PIL.ImageFile.Parser), off the event loop
2. EXIF auto-orientation
3. Resize: cover fit for width+height, contain fit for a single side
4. Encode as JPEG or PNG at the requested quality
"""

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import AsyncIterator, Optional, Tuple

from PIL import Image, ImageFile, ImageOps

from .cache_keys import FORMAT_PNG, TransformRequest
from .errors import TransformError

logger = logging.getLogger(__name__)


@dataclass
class TransformResult:
    """Encoded output of one transform."""
    data: bytes
    content_type: str
    width: int
    height: int


def resolve_size(
    original: Tuple[int, int],
    width: Optional[int],
    height: Optional[int],
) -> Optional[Tuple[int, int]]:
    """
    Target size for a contain fit bounded by a single dimension.

    Returns None when nothing is requested. Only meaningful when at most
    one of width/height is given; both means cover fit.
    """
    original_width, original_height = original
    if width and not height:
        return width, max(1, round(original_height * width / original_width))
    if height and not width:
        return max(1, round(original_width * height / original_height)), height
    return None


def _resize(img: Image.Image, width: Optional[int], height: Optional[int]) -> Image.Image:
    if width and height:
        # Cover: scale to fill, center crop the excess
        return ImageOps.fit(img, (width, height), method=Image.Resampling.LANCZOS)

    target = resolve_size(img.size, width, height)
    if target is None or target == img.size:
        return img
    return img.resize(target, Image.Resampling.LANCZOS)


def _flatten_for_jpeg(img: Image.Image) -> Image.Image:
    """JPEG has no alpha: composite transparent images onto white."""
    if img.mode == "P":
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.getchannel("A"))
        return background
    if img.mode not in ("RGB", "L"):
        return img.convert("RGB")
    return img


def _encode(img: Image.Image, output_format: str, quality: int) -> bytes:
    output = BytesIO()
    if output_format == FORMAT_PNG:
        if img.mode not in ("RGB", "RGBA", "L", "LA", "P", "1", "I", "I;16"):
            img = img.convert("RGBA")
        # PNG is lossless, quality has no meaning here
        img.save(output, format="PNG")
    else:
        _flatten_for_jpeg(img).save(output, format="JPEG", quality=quality)
    return output.getvalue()


def render(img: Image.Image, req: TransformRequest) -> TransformResult:
    """Orient, resize and encode a decoded image. CPU bound."""
    img = ImageOps.exif_transpose(img)
    img = _resize(img, req.width, req.height)
    data = _encode(img, req.output_format, req.quality)
    return TransformResult(
        data=data,
        content_type=req.content_type,
        width=img.width,
        height=img.height,
    )


class TransformPipeline:
    """
    Turns a stream of source bytes into the requested output image.

    Usage:
        pipeline = TransformPipeline()
        result = await pipeline.transform(chunks, request)
    """

    async def transform(self, chunks: AsyncIterator[bytes], req: TransformRequest) -> TransformResult:
        """
        Decode the stream incrementally, then orient, resize and encode.

        Raises:
            TransformError: the bytes are not a decodable image, or encoding failed.
            OriginFetchError: propagated unchanged from the chunk iterator.
        """
        parser = ImageFile.Parser()
        received = 0

        async for chunk in chunks:
            received += len(chunk)
            try:
                await asyncio.to_thread(parser.feed, chunk)
            except Exception as e:
                raise TransformError(f"Cannot decode image: {e}") from e

        try:
            img = await asyncio.to_thread(parser.close)
        except Exception as e:
            raise TransformError(f"Cannot decode image ({received} bytes): {e}") from e

        try:
            result = await asyncio.to_thread(render, img, req)
        except Exception as e:
            raise TransformError(f"Cannot transform image: {e}") from e

        logger.info(
            f"[TransformPipeline] {img.width}x{img.height} -> {result.width}x{result.height} "
            f"{req.output_format} q{req.quality} ({received // 1024}KB -> {len(result.data) // 1024}KB)"
        )
        return result
