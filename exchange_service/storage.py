# exchange_service/storage.py
"""Image attachments for PD exchanges, stored on a local/mounted volume."""

import os
import re
import time
from pathlib import Path

IMAGE_STORAGE_DIR = Path(os.getenv("IMAGE_STORAGE_DIR", "./pd_images"))
IMAGE_PUBLIC_BASE_URL = os.getenv("IMAGE_PUBLIC_BASE_URL", "/exchanges/images")

MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(10 * 1024 * 1024)))


class ImageStorageError(Exception):
    pass


def storage_name(original_name: str) -> str:
    """``<epoch-ms>-<name without whitespace>``"""
    base = re.sub(r"\s", "", Path(original_name or "image").name)
    return f"{int(time.time() * 1000)}-{base}"


def save_image(original_name: str, data: bytes, root: Path = None) -> str:
    root = Path(root or IMAGE_STORAGE_DIR)
    if not data:
        raise ImageStorageError("Empty upload")
    if len(data) > MAX_IMAGE_BYTES:
        raise ImageStorageError(f"Image larger than {MAX_IMAGE_BYTES} bytes")

    name = storage_name(original_name)
    root.mkdir(parents=True, exist_ok=True)
    (root / name).write_bytes(data)
    return name


def resolve_image(name: str, root: Path = None) -> Path:
    """Path of a stored image; rejects anything that is not a bare file name."""
    root = Path(root or IMAGE_STORAGE_DIR)
    if Path(name).name != name or name in ("", ".", ".."):
        raise ImageStorageError("Invalid image name")
    path = root / name
    if not path.is_file():
        raise FileNotFoundError(name)
    return path


def public_url(name: str) -> str:
    return f"{IMAGE_PUBLIC_BASE_URL.rstrip('/')}/{name}"
