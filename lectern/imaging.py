"""Image decoding, page rendering and cover generation with Pillow."""

from __future__ import annotations

from io import BytesIO
from typing import Literal, NamedTuple, Optional

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field

from .errors import PageExtractionError

MEDIA_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}
_OUTPUT_FORMATS = {"jpeg": "JPEG", "png": "PNG", "webp": "WEBP"}


class Page(NamedTuple):
    data: bytes
    media_type: str


class RenderOptions(BaseModel):
    """How a page image is handed back to the caller."""

    max_width: Optional[int] = Field(default=None, ge=1)
    max_height: Optional[int] = Field(default=None, ge=1)
    # None keeps the source format when it is displayable, JPEG otherwise.
    image_format: Optional[Literal["jpeg", "png", "webp"]] = None
    quality: int = Field(default=85, ge=1, le=100)


def decode(data: bytes) -> Image.Image:
    """Decode raw bytes into a fully loaded raster image."""
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise PageExtractionError(f"Cannot decode image: {exc}") from exc
    return image


def encode(image: Image.Image, fmt: str = "JPEG", quality: int = 85) -> bytes:
    """Encode a raster image into displayable bytes."""
    if fmt == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    elif fmt == "WEBP" and image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA")
    buffer = BytesIO()
    if fmt in ("JPEG", "WEBP"):
        image.save(buffer, format=fmt, quality=quality)
    else:
        image.save(buffer, format=fmt)
    return buffer.getvalue()


def render_page(data: bytes, options: RenderOptions) -> Page:
    """Decode a page image and re-encode it according to `options`."""
    image = decode(data)
    source_format = image.format

    if options.image_format is not None:
        fmt = _OUTPUT_FORMATS[options.image_format]
    elif source_format in ("JPEG", "PNG", "WEBP"):
        fmt = source_format
    else:
        fmt = "JPEG"

    if options.max_width or options.max_height:
        image.thumbnail(
            (options.max_width or image.width, options.max_height or image.height)
        )

    try:
        encoded = encode(image, fmt, options.quality)
    except (OSError, ValueError) as exc:
        raise PageExtractionError(f"Cannot encode page as {fmt}: {exc}") from exc
    return Page(encoded, MEDIA_TYPES[fmt])


def make_cover(data: bytes, width: int, height: int, quality: int) -> bytes:
    """Return a JPEG cover fitting within width x height."""
    image = decode(data).convert("RGB")
    image.thumbnail((width, height))
    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()
