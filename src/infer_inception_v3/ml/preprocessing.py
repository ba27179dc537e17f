"""Image preprocessing pipeline.

Decodes uploaded bytes, conditions images to the 3-channel layout the network
expects, crops region proposals and builds the input blob.
"""

from __future__ import annotations

import io
import math
from typing import TYPE_CHECKING

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from infer_inception_v3.ml.task_io import Rect


def decode_image(image_bytes: bytes, max_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format Pillow supports).
        max_pixels: Upper bound on width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        ValueError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise ValueError("Empty image data")
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            if img.width * img.height > max_pixels:
                raise ValueError(f"Image too large: {img.width}x{img.height} exceeds {max_pixels} pixels")
            img = ImageOps.exif_transpose(img)
            return np.asarray(img.convert("RGB"), dtype=np.uint8)
    except Image.DecompressionBombError as e:
        raise ValueError(f"Image too large: {e}") from e
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Cannot decode image: {e}") from e


def ensure_color(image: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Return a 3-channel version of ``image``."""
    if image.ndim == 2 or image.shape[2] == 1:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2RGB)
    return image


def crop_region(image: NDArray[np.uint8], rect: Rect) -> NDArray[np.uint8] | None:
    """Crop a region proposal, clipped to the image bounds.

    Returns None when the region does not overlap the image.
    """
    height, width = image.shape[:2]
    left = max(0, math.floor(rect.x))
    top = max(0, math.floor(rect.y))
    right = min(width, math.ceil(rect.x + rect.width))
    bottom = min(height, math.ceil(rect.y + rect.height))
    if right <= left or bottom <= top:
        return None
    return np.ascontiguousarray(image[top:bottom, left:right])


def make_blob(
    image: NDArray[np.uint8],
    size: int,
    scale: float,
    mean: tuple[float, float, float],
    swap_rb: bool = False,
) -> NDArray[np.float32]:
    """Resize and normalize an image into a 1x3xSxS blob."""
    return cv2.dnn.blobFromImage(image, scale, (size, size), mean, swap_rb, False)
