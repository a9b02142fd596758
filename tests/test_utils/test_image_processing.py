"""Tests for WebP rendition helpers."""

from io import BytesIO

import pytest
from PIL import Image, UnidentifiedImageError

from tokko_cache.utils.image_processing import to_thumbnail, to_webp


def _image_bytes(size: tuple[int, int], mode: str = "RGB", fmt: str = "PNG") -> bytes:
    buf = BytesIO()
    Image.new(mode, size).save(buf, format=fmt)
    return buf.getvalue()


class TestToWebp:
    def test_small_image_keeps_size(self) -> None:
        rendition = to_webp(_image_bytes((300, 200)), max_dim=1600)
        assert (rendition.width, rendition.height) == (300, 200)
        assert Image.open(BytesIO(rendition.data)).format == "WEBP"

    def test_downscales_longest_edge(self) -> None:
        rendition = to_webp(_image_bytes((1000, 3000)), max_dim=600)
        assert (rendition.width, rendition.height) == (200, 600)

    def test_palette_and_alpha_images(self) -> None:
        assert to_webp(_image_bytes((50, 50), mode="P")).width == 50
        assert to_webp(_image_bytes((50, 50), mode="RGBA")).width == 50

    def test_rejects_garbage(self) -> None:
        with pytest.raises(UnidentifiedImageError):
            to_webp(b"not an image")


class TestToThumbnail:
    def test_fits_box_keeping_ratio(self) -> None:
        rendition = to_thumbnail(_image_bytes((800, 400), fmt="JPEG"), size=200)
        assert (rendition.width, rendition.height) == (200, 100)

    def test_never_upscales(self) -> None:
        rendition = to_thumbnail(_image_bytes((100, 80)), size=400)
        assert (rendition.width, rendition.height) == (100, 80)
