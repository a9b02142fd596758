"""Disk layout for processed property images."""

import hashlib
import re
from pathlib import Path
from typing import Final

_IMAGE_CACHE_DIR: Final = "image_cache"

IMAGE_URL_PREFIX: Final = "/images"

_REJECTED_EXTENSIONS: Final = (".pdf", ".svg", ".html", ".js", ".css", ".json", ".xml")


def is_valid_image_url(url: str) -> bool:
    """Check if URL points to a supported image format.

    Rejects known non-image extensions (.pdf, .svg). Extension-less URLs
    pass through since CDNs commonly serve images without extensions.
    """
    if not url.lower().startswith(("http://", "https://")):
        return False
    path = url.split("?")[0].lower()
    return not path.endswith(_REJECTED_EXTENSIONS)


def safe_dir_name(tokko_id: int | str) -> str:
    """Filesystem-safe directory name for a property."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", str(tokko_id))


def get_cache_dir(data_dir: str, tokko_id: int | str) -> Path:
    """Return the cache directory for a property's images."""
    return Path(data_dir) / _IMAGE_CACHE_DIR / safe_dir_name(tokko_id)


def url_to_filename(url: str, variant: str, index: int) -> str:
    """Deterministic WebP filename from the origin URL.

    E.g. "full_003_a1b2c3d4.webp" or "thumb_003_a1b2c3d4.webp"
    """
    url_hash = hashlib.md5(url.encode()).hexdigest()[:8]
    return f"{variant}_{index:03d}_{url_hash}.webp"


def public_image_url(tokko_id: int, filename: str) -> str:
    """URL path under which a processed image is served."""
    return f"{IMAGE_URL_PREFIX}/{safe_dir_name(tokko_id)}/{filename}"


def save_image_bytes(path: Path, data: bytes) -> None:
    """Write image bytes to disk, creating parent dirs as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def resolve_cached_file(data_dir: str, tokko_id: str, filename: str) -> Path | None:
    """Locate a processed image, refusing anything outside the image cache.

    Returns:
        The file path, or None if it does not exist or escapes the cache dir.
    """
    if safe_dir_name(tokko_id) != tokko_id or "/" in filename or "\\" in filename:
        return None
    root = (Path(data_dir) / _IMAGE_CACHE_DIR).resolve()
    candidate = (root / tokko_id / filename).resolve()
    if not candidate.is_relative_to(root) or not candidate.is_file():
        return None
    return candidate
