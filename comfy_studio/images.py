"""Preview and result image helpers."""

from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .api.models import ImageResult


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str | None


def decode_image_data(image_data: str) -> bytes:
    """Accept raw base64 or a ``data:image/...;base64,`` URL."""
    payload = image_data.strip()
    if payload.startswith("data:"):
        _, _, payload = payload.partition(",")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Preview payload is not valid base64") from exc


def image_info(data: bytes) -> ImageInfo:
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            return ImageInfo(width=int(width), height=int(height), format=image.format)
    except UnidentifiedImageError as exc:
        raise ValueError("Not a recognised image") from exc


def save_preview(image_data: str, path: Path) -> Path:
    data = decode_image_data(image_data)
    try:
        with Image.open(io.BytesIO(data)) as image:
            path.parent.mkdir(parents=True, exist_ok=True)
            image.save(path)
    except UnidentifiedImageError as exc:
        raise ValueError("Preview payload is not an image") from exc
    return path


def result_path(out_dir: Path, image: ImageResult) -> Path:
    # Engine filenames may carry a subfolder; keep only the basename locally.
    return out_dir / Path(image.filename).name


def save_result(data: bytes, out_dir: Path, image: ImageResult) -> Path:
    image_info(data)
    path = result_path(out_dir, image)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path
