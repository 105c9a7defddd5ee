"""
Derivative Cache Implementation

In-memory store of encoded image derivatives keyed by (resource, variant).

Features:
- Fetch-and-transform on first request, served from memory afterwards
- Single-flight: concurrent misses for one key share a single computation
- Point and per-resource invalidation
- No TTL and no size-based eviction; entries leave only when invalidated
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Dict, Optional, Protocol, Tuple, Union

from .errors import DerivativeCacheError, NotFoundError, UpstreamFetchError, TransformError
from .keys import FitPolicy, Variant, belongs_to, make_key, parse_key, resolve_variant
from .transform import OUTPUT_FORMAT, render_derivative

logger = logging.getLogger(__name__)


class CacheOrigin(str, Enum):
    """Where a served derivative came from."""
    HIT = "HIT"
    MISS = "MISS"


@dataclass
class ResourceMeta:
    """What the storage service knows about a resource's original image."""
    resource_id: str
    has_original: bool
    collection_id: Optional[str] = None
    filename: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class OriginalStore(Protocol):
    """Read side of the storage service, as consumed by the cache."""

    async def get_resource_meta(self, resource_id: str) -> ResourceMeta:
        ...

    async def fetch_original(self, resource_id: str, meta: Optional[ResourceMeta] = None) -> bytes:
        ...


@dataclass
class DerivativeEntry:
    """
    Cached derivative.

    Read-only once stored.
    """
    key: str
    variant: Variant
    data: bytes
    created_at: float = field(default_factory=time.time)

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def to_summary(self) -> Dict[str, Any]:
        resource_id, _ = parse_key(self.key)
        return {
            "key": self.key,
            "resource_id": resource_id,
            "variant": self.variant.value,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at,
        }


class DerivativeCache:
    """
    In-memory derivative cache.

    Map reads and writes are synchronous under a Lock. Only the upstream fetch
    and the transform suspend. Instances are independent; the application
    owns one per resource kind.
    """

    def __init__(
        self,
        store: OriginalStore,
        fit: FitPolicy = FitPolicy.COVER,
        name: str = "derivatives",
    ):
        """
        Initialize derivative cache

        Args:
            store: Storage collaborator providing original bytes
            fit: Fit policy applied to every variant of this cache
            name: Label used in logs and stats
        """
        self._store = store
        self._fit = fit
        self._name = name
        self._entries: Dict[str, DerivativeEntry] = {}
        self._pending: Dict[str, "asyncio.Task[DerivativeEntry]"] = {}
        self._lock = Lock()
        self._hits = 0
        self._misses = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def fit(self) -> FitPolicy:
        return self._fit

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, resource_id: str, variant: Union[str, Variant, None]) -> bool:
        key = make_key(resource_id, variant)
        with self._lock:
            return key in self._entries

    async def get(self, resource_id: str, variant: Union[str, Variant, None]) -> Tuple[bytes, CacheOrigin]:
        """
        Serve a derivative, computing it on first access.

        Args:
            resource_id: Identifier of the source image
            variant: Requested variant; unknown values behave as medium

        Returns:
            (encoded bytes, HIT or MISS)

        Raises:
            ValidationError: Empty resource id
            NotFoundError: Resource or its original image is absent
            UpstreamFetchError: Storage service unreachable or non-2xx
            TransformError: Original could not be decoded or re-encoded
        """
        resolved = resolve_variant(variant)
        key = make_key(resource_id, resolved)

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._hits += 1
                return entry.data, CacheOrigin.HIT
            self._misses += 1

        # Join an in-flight computation for this key, or start one
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(key, resource_id, resolved))
            self._pending[key] = task
        else:
            logger.debug(f"[DerivativeCache:{self._name}] Joining in-flight computation: {key}")

        entry = await asyncio.shield(task)
        return entry.data, CacheOrigin.MISS

    async def _compute(self, key: str, resource_id: str, variant: Variant) -> DerivativeEntry:
        """Fetch the original, transform it and store the result."""
        try:
            meta = await self._store.get_resource_meta(resource_id)
            if not meta.has_original:
                raise NotFoundError(
                    f"No original image for resource '{resource_id}'",
                    resource_id=resource_id,
                    variant=variant.value,
                )

            original = await self._store.fetch_original(resource_id, meta)
            data = await asyncio.to_thread(render_derivative, original, variant, self._fit)

            entry = DerivativeEntry(key=key, variant=variant, data=data)
            with self._lock:
                self._entries[key] = entry

            logger.info(
                f"[DerivativeCache:{self._name}] Stored {key} "
                f"({len(original)} -> {entry.size_bytes} bytes)"
            )
            return entry

        except NotFoundError as e:
            e.resource_id = e.resource_id or resource_id
            e.variant = e.variant or variant.value
            logger.debug(f"[DerivativeCache:{self._name}] Not found: {resource_id} ({variant.value})")
            raise
        except (UpstreamFetchError, TransformError) as e:
            e.resource_id = e.resource_id or resource_id
            e.variant = e.variant or variant.value
            logger.error(
                f"[DerivativeCache:{self._name}] {e.kind} for resource={resource_id} "
                f"variant={variant.value}: {e.message}"
            )
            raise
        except DerivativeCacheError:
            raise
        except Exception as e:
            logger.error(
                f"[DerivativeCache:{self._name}] Transform failed for resource={resource_id} "
                f"variant={variant.value}: {e}"
            )
            raise TransformError(
                "Failed to produce derivative",
                resource_id=resource_id,
                variant=variant.value,
            ) from e
        finally:
            self._pending.pop(key, None)

    def put(self, resource_id: str, variant: Union[str, Variant, None], data: bytes) -> str:
        """
        Insert a derivative computed elsewhere, overwriting any existing entry.

        Returns:
            The derivative key
        """
        resolved = resolve_variant(variant)
        key = make_key(resource_id, resolved)
        with self._lock:
            self._entries[key] = DerivativeEntry(key=key, variant=resolved, data=data)
        logger.debug(f"[DerivativeCache:{self._name}] Put {key} ({len(data)} bytes)")
        return key

    def invalidate(self, resource_id: str) -> int:
        """
        Remove every variant cached for a resource.

        Returns:
            Number of entries removed
        """
        with self._lock:
            stale = [k for k in self._entries if belongs_to(k, resource_id)]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.info(f"[DerivativeCache:{self._name}] Invalidated {len(stale)} entries for {resource_id}")
        return len(stale)

    def invalidate_key(self, resource_id: str, variant: Union[str, Variant, None]) -> bool:
        """
        Remove exactly one derivative.

        Returns:
            True if an entry was removed
        """
        key = make_key(resource_id, variant)
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.info(f"[DerivativeCache:{self._name}] Invalidated {key}")
        return removed

    def clear(self) -> int:
        """Drop all entries. Returns the number removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"[DerivativeCache:{self._name}] Cleared all {count} entries")
        return count

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        with self._lock:
            entries = list(self._entries.values())
            total_size = sum(e.size_bytes for e in entries)
            total_requests = self._hits + self._misses
            return {
                "name": self._name,
                "fit": self._fit.value,
                "output_format": OUTPUT_FORMAT,
                "total_entries": len(entries),
                "total_size_bytes": total_size,
                "total_size_mb": round(total_size / (1024 * 1024), 2),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate_percent": round(self._hits / total_requests * 100, 1) if total_requests else 0,
                "in_flight": len(self._pending),
            }

    def list_entries(self) -> list:
        """Summaries of cached entries, newest first."""
        with self._lock:
            entries = sorted(self._entries.values(), key=lambda e: -e.created_at)
        return [e.to_summary() for e in entries]
