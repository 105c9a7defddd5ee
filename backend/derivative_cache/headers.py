"""
Response headers for served derivatives.
"""

from typing import Dict, Optional

from .memory_store import CacheOrigin
from .transform import OUTPUT_FORMAT, OUTPUT_MIME

CACHE_MAX_AGE_SECONDS = 86400  # Browser cache 24h


def derive_filename(prefix: str, resource_id: str) -> str:
    """Download name for a derivative, e.g. avatar-<id>.webp"""
    return f"{prefix}-{resource_id}.{OUTPUT_FORMAT}"


def build_image_headers(
    data: bytes,
    origin: CacheOrigin,
    download: bool = False,
    filename: Optional[str] = None,
    resource_id: Optional[str] = None,
) -> Dict[str, str]:
    """
    Build HTTP headers for a derivative response.

    Args:
        data: Encoded derivative bytes
        origin: HIT or MISS
        download: Add an attachment Content-Disposition
        filename: Attachment name (defaults to image-<resource_id>.webp)
        resource_id: Echoed back as X-Image-Id when given
    """
    headers = {
        "Content-Type": OUTPUT_MIME,
        "Content-Length": str(len(data)),
        "Cache-Control": f"public, max-age={CACHE_MAX_AGE_SECONDS}",
        "X-Cache": CacheOrigin(origin).value,
    }
    if resource_id:
        headers["X-Image-Id"] = resource_id
    if download:
        name = filename or derive_filename("image", resource_id or "download")
        headers["Content-Disposition"] = f'attachment; filename="{name}"'
    return headers
