from __future__ import annotations

import io

import numpy as np
from PIL import Image

from .errors import DecodeError

_RESAMPLE = Image.Resampling.BILINEAR


def decode_image(image_bytes: bytes) -> Image.Image:
    """Decode raw bytes into an RGB image.

    Alpha is dropped rather than composited and palette or greyscale images are
    expanded, so every pixel exposes three channels in ``[0, 255]``.
    """
    if not image_bytes:
        raise DecodeError("Image payload is empty")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image.load()
            return image.convert("RGB")
    except Exception as exc:  # Pillow reports malformed files with several exception types
        raise DecodeError(f"Failed to decode image: {exc}") from exc


def resize_image(image: Image.Image, width: int, height: int) -> Image.Image:
    return image.resize((width, height), _RESAMPLE)


def get_pixel(image: Image.Image, x: int, y: int) -> tuple[int, int, int]:
    r, g, b = image.getpixel((x, y))[:3]
    return int(r), int(g), int(b)


def to_input_tensor(image: Image.Image, size: int) -> np.ndarray:
    """Return a contiguous float32 tensor of shape ``[1, size, size, 3]`` in ``[0, 1]``."""
    resized = resize_image(image, size, size)
    pixels = np.asarray(resized, dtype=np.float32) / 255.0
    return np.ascontiguousarray(pixels.reshape(1, size, size, 3))


def uniform_tensor(size: int, value: float = 0.5) -> np.ndarray:
    return np.full((1, size, size, 3), value, dtype=np.float32)


__all__ = [
    "decode_image",
    "resize_image",
    "get_pixel",
    "to_input_tensor",
    "uniform_tensor",
]
