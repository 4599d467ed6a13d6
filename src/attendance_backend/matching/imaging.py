"""
Image Decoding
==============
Turns scanner output into the 2-D luminance arrays the scorer works on.

The scanner SDK delivers PNG samples as ``data:image/png;base64,...`` URLs;
HTTP uploads deliver raw bytes. Both end up as float64 arrays of shape
(height, width) with values in 0..255.
"""

import base64
import binascii
import io
import logging
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import InvalidImage

logger = logging.getLogger(__name__)

DATA_URL_MARKER = ";base64,"

ImageSource = Union[bytes, bytearray, str, np.ndarray]


def _b64decode(text: str) -> bytes:
    text = text.strip()
    if text.startswith("data:"):
        marker = text.find(DATA_URL_MARKER)
        if marker < 0:
            raise InvalidImage("Data URL is not base64 encoded")
        text = text[marker + len(DATA_URL_MARKER):]

    # Scanner SDKs emit base64url without padding
    text = "".join(text.split()).replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImage(f"Invalid base64 image data: {e}") from e


def to_grayscale(pixels: np.ndarray) -> np.ndarray:
    """Coerce an in-memory raster to a 2-D float64 luminance array."""
    arr = np.asarray(pixels)
    if arr.ndim == 3:
        if arr.shape[2] == 1:
            arr = arr[:, :, 0]
        elif arr.shape[2] in (3, 4):
            rgb = Image.fromarray(np.clip(arr[:, :, :3], 0, 255).astype(np.uint8))
            arr = np.asarray(rgb.convert("L"))
        else:
            raise InvalidImage(f"Unsupported channel count: {arr.shape[2]}")
    elif arr.ndim != 2:
        raise InvalidImage(f"Expected a 2-D raster, got shape {arr.shape}")
    return arr.astype(np.float64)


def decode_image(source: ImageSource) -> np.ndarray:
    """
    Decode an image into a grayscale float64 array.

    Args:
        source: Encoded image bytes, base64 text / data URL, or an already
            decoded numpy raster

    Returns:
        Array of shape (height, width)

    Raises:
        InvalidImage: If the data cannot be decoded
    """
    if isinstance(source, np.ndarray):
        return to_grayscale(source)

    if isinstance(source, str):
        data = _b64decode(source)
    elif isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    else:
        raise InvalidImage(f"Unsupported image source type: {type(source).__name__}")

    if not data:
        raise InvalidImage("Empty image data")

    try:
        with Image.open(io.BytesIO(data)) as image:
            gray = image.convert("L")
            pixels = np.asarray(gray, dtype=np.float64)
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImage(f"Cannot decode image: {e}") from e

    logger.debug(f"Decoded image: {pixels.shape[1]}x{pixels.shape[0]}")
    return pixels


def encode_png(pixels: np.ndarray) -> bytes:
    """Encode a grayscale raster as PNG bytes (template storage format)."""
    arr = np.clip(np.asarray(pixels), 0, 255).astype(np.uint8)
    if arr.ndim != 2:
        raise InvalidImage(f"Expected a 2-D raster, got shape {arr.shape}")
    buffer = io.BytesIO()
    Image.fromarray(arr).save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_url(png_bytes: bytes) -> str:
    """Wrap PNG bytes the way the scanner SDK does."""
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")
