"""
Derivative Cache Module

On-demand image derivative cache: fetches an original from the storage
service, produces a resized WEBP derivative on first request and serves
identical requests from memory afterwards.

Features:
- Unambiguous (resource, variant) keys with per-resource invalidation
- Single-flight fetch+transform per key
- Typed error taxonomy mapped to HTTP statuses
- Response header helper (HIT/MISS marker, download disposition)
"""

from .errors import (
    DerivativeCacheError,
    NotFoundError,
    TransformError,
    UpstreamFetchError,
    ValidationError,
)
from .headers import build_image_headers, derive_filename
from .keys import FitPolicy, Variant, belongs_to, make_key, parse_key, resolve_variant
from .memory_store import (
    CacheOrigin,
    DerivativeCache,
    DerivativeEntry,
    OriginalStore,
    ResourceMeta,
)
from .transform import render_derivative, render_upload

__all__ = [
    "DerivativeCache",
    "DerivativeEntry",
    "CacheOrigin",
    "OriginalStore",
    "ResourceMeta",
    "Variant",
    "FitPolicy",
    "make_key",
    "belongs_to",
    "parse_key",
    "resolve_variant",
    "render_derivative",
    "render_upload",
    "build_image_headers",
    "derive_filename",
    "DerivativeCacheError",
    "NotFoundError",
    "UpstreamFetchError",
    "TransformError",
    "ValidationError",
]
