"""Pillow helpers that turn origin photos into WebP renditions."""

from dataclasses import dataclass
from io import BytesIO
from typing import Final

from PIL import Image, ImageOps

# Limit decompression bomb threshold for untrusted image bytes.
Image.MAX_IMAGE_PIXELS = 50_000_000

DEFAULT_MAX_DIMENSION: Final = 1600
DEFAULT_THUMBNAIL_SIZE: Final = 400


@dataclass(frozen=True)
class Rendition:
    data: bytes
    width: int
    height: int


def _open_rgb(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img = ImageOps.exif_transpose(img)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "transparency" in img.info else "RGB")
    return img


def _encode_webp(img: Image.Image, quality: int) -> Rendition:
    buf = BytesIO()
    img.save(buf, format="WEBP", quality=quality, method=4)
    return Rendition(data=buf.getvalue(), width=img.width, height=img.height)


def to_webp(
    data: bytes, max_dim: int = DEFAULT_MAX_DIMENSION, quality: int = 80
) -> Rendition:
    """Re-encode as WebP, downscaling so the longest edge is <= max_dim.

    Raises:
        PIL.UnidentifiedImageError: If the bytes are not an image.
    """
    img = _open_rgb(data)
    w, h = img.size
    if w > max_dim or h > max_dim:
        scale = max_dim / max(w, h)
        img = img.resize(
            (max(1, int(w * scale)), max(1, int(h * scale))), Image.Resampling.LANCZOS
        )
    return _encode_webp(img, quality)


def to_thumbnail(
    data: bytes, size: int = DEFAULT_THUMBNAIL_SIZE, quality: int = 75
) -> Rendition:
    """WebP thumbnail fitting inside a size x size box, aspect ratio kept."""
    img = _open_rgb(data)
    img.thumbnail((size, size), Image.Resampling.LANCZOS)
    return _encode_webp(img, quality)
