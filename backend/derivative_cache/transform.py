"""
Derivative Transform

Handles:
- Decoding original image bytes with Pillow
- Resizing per variant and fit policy
- Re-encoding to the cache output format (WEBP)

Output format, quality and effort are process-wide constants.
"""

import logging
from io import BytesIO
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import TransformError
from .keys import FitPolicy, Variant

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "webp"
OUTPUT_MIME = "image/webp"
OUTPUT_QUALITY = 80
OUTPUT_EFFORT = 6               # Pillow WEBP "method" (0-6)

# Canonical sizes applied to uploads before they reach the storage service
UPLOAD_COVER_SIZE = 400
UPLOAD_INSIDE_MAX_SIZE = 800


def _open_image(data: bytes) -> Image.Image:
    """Decode bytes, apply EXIF orientation and normalize the mode for WEBP."""
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise TransformError("Input is not a decodable image") from e

    img = ImageOps.exif_transpose(img)

    has_alpha = img.mode in ("RGBA", "LA") or (
        img.mode == "P" and "transparency" in img.info
    )
    if has_alpha and img.mode != "RGBA":
        img = img.convert("RGBA")
    elif not has_alpha and img.mode != "RGB":
        img = img.convert("RGB")
    return img


def _encode(img: Image.Image) -> bytes:
    output = BytesIO()
    try:
        img.save(
            output,
            format=OUTPUT_FORMAT.upper(),
            quality=OUTPUT_QUALITY,
            method=OUTPUT_EFFORT,
        )
    except (OSError, ValueError) as e:
        raise TransformError("Failed to encode derivative") from e
    return output.getvalue()


def _cover(img: Image.Image, size: int, allow_upscale: bool) -> Image.Image:
    """Centre crop to a square; without upscaling the side is capped by the source."""
    width, height = img.size
    side = size if allow_upscale else min(size, width, height)
    return ImageOps.fit(
        img,
        (side, side),
        method=Image.Resampling.LANCZOS,
        centering=(0.5, 0.5),
    )


def _inside(img: Image.Image, size: int) -> Image.Image:
    """Shrink to fit inside size x size keeping aspect ratio; never upscales."""
    resized = img.copy()
    resized.thumbnail((size, size), Image.Resampling.LANCZOS)
    return resized


def _resize(img: Image.Image, size: Optional[int], fit: FitPolicy, allow_upscale: bool = False) -> Image.Image:
    if size is None:
        return img
    if fit == FitPolicy.COVER:
        return _cover(img, size, allow_upscale)
    return _inside(img, size)


def render_derivative(data: bytes, variant: Variant, fit: FitPolicy) -> bytes:
    """
    Produce the encoded derivative for one variant.

    Args:
        data: Original image bytes
        variant: Target variant (ORIGINAL keeps dimensions, only re-encodes)
        fit: Fit policy of the owning cache

    Returns:
        WEBP bytes

    Raises:
        TransformError: If the input cannot be decoded or encoded
    """
    img = _open_image(data)
    original_size = img.size
    img = _resize(img, variant.size, fit)
    encoded = _encode(img)
    logger.debug(
        f"[Transform] {variant.value}/{fit.value}: "
        f"{original_size[0]}x{original_size[1]} -> {img.size[0]}x{img.size[1]} ({len(encoded)} bytes)"
    )
    return encoded


def render_upload(data: bytes, fit: FitPolicy) -> bytes:
    """
    Canonical transform applied to uploads.

    COVER produces exactly UPLOAD_COVER_SIZE square (upscaling small inputs);
    INSIDE caps both sides at UPLOAD_INSIDE_MAX_SIZE without upscaling.
    """
    img = _open_image(data)
    if fit == FitPolicy.COVER:
        img = _resize(img, UPLOAD_COVER_SIZE, fit, allow_upscale=True)
    else:
        img = _resize(img, UPLOAD_INSIDE_MAX_SIZE, fit)
    return _encode(img)
