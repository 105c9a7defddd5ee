"""
Media API Routes

Provides endpoints for:
- Serving avatar and image derivatives through the derivative cache
- Uploading / replacing / deleting originals (with cache invalidation)
- User info with avatar URL
- Cache statistics and manual invalidation
- Health check
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse, Response

from derivative_cache import (
    DerivativeCache,
    DerivativeCacheError,
    FitPolicy,
    NotFoundError,
    TransformError,
    Variant,
    build_image_headers,
    derive_filename,
    render_upload,
)
from derivative_cache.transform import OUTPUT_FORMAT, OUTPUT_MIME

from . import config
from .auth import can_modify, get_current_user, is_admin
from .models import (
    AvatarRef,
    AvatarUpdateResponse,
    CacheStatsResponse,
    ImageRef,
    ImageUpdateResponse,
    InvalidateResponse,
    UserInfoResponse,
)
from .services import MediaServices, get_services

logger = logging.getLogger(__name__)

# ============================================
# Routers
# ============================================

users_router = APIRouter(prefix="/api/users", tags=["Users"])
images_router = APIRouter(prefix="/api/images", tags=["Images"])
cache_router = APIRouter(prefix="/api/cache", tags=["Derivative Cache"])
health_router = APIRouter(tags=["Health"])


# ============================================
# Helpers
# ============================================

def _raise_http(error: DerivativeCacheError) -> NoReturn:
    """Convert a cache error into an HTTPException with a structured detail."""
    raise HTTPException(
        status_code=error.status_code,
        detail=error.to_dict(include_details=config.DEBUG_ERRORS),
    ) from error


async def _serve_derivative(
    cache: DerivativeCache,
    resource_id: str,
    size: str,
    download: bool,
    filename_prefix: str,
) -> Response:
    try:
        data, origin = await cache.get(resource_id, size)
    except DerivativeCacheError as e:
        _raise_http(e)

    headers = build_image_headers(
        data,
        origin,
        download=download,
        filename=derive_filename(filename_prefix, resource_id),
        resource_id=resource_id,
    )
    return Response(content=data, media_type=OUTPUT_MIME, headers=headers)


async def _read_upload(upload: Optional[UploadFile]) -> bytes:
    """Validate an uploaded image and return its bytes."""
    if upload is None:
        raise HTTPException(status_code=400, detail="No image provided")

    content_type = (upload.content_type or "").lower()
    if not content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")

    data = await upload.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded image is empty")
    if len(data) > config.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise HTTPException(
            status_code=413,
            detail=f"Image too large (max {config.MAX_UPLOAD_SIZE_MB}MB)",
        )
    return data


async def _optimize_upload(data: bytes, fit: FitPolicy) -> bytes:
    """Canonical upload transform; undecodable uploads are the client's fault."""
    try:
        return await asyncio.to_thread(render_upload, data, fit)
    except TransformError as e:
        raise HTTPException(status_code=400, detail="Uploaded file is not a valid image") from e


def _upload_filename(prefix: str, resource_id: Optional[str] = None) -> str:
    # Millisecond suffix busts caches in front of the storage service
    stamp = int(time.time() * 1000)
    if resource_id:
        return f"{prefix}-{resource_id}-{stamp}.{OUTPUT_FORMAT}"
    return f"{prefix}-{stamp}.{OUTPUT_FORMAT}"


async def _get_owned_image(services: MediaServices, image_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    try:
        record = await services.storage.get_record(
            services.image_store.collection,
            image_id,
            fields="id,owner",
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Image not found")
    except DerivativeCacheError as e:
        _raise_http(e)

    if not can_modify(user, record.get("owner")):
        raise HTTPException(status_code=403, detail="You do not have permission to modify this image")
    return record


# ============================================
# Avatar endpoints
# ============================================

@users_router.get("/{user_id}/avatar")
async def get_avatar(
    user_id: str,
    size: str = Query(Variant.MEDIUM.value, description="small, medium, large or original"),
    download: bool = Query(False, description="Serve as an attachment"),
    services: MediaServices = Depends(get_services),
):
    """
    Serve a user's avatar as WEBP.

    Example:
        GET /api/users/abc123/avatar?size=small
    """
    return await _serve_derivative(services.avatar_cache, user_id, size, download, "avatar")


@users_router.post("/{user_id}/avatar", response_model=AvatarUpdateResponse)
@users_router.put("/{user_id}/avatar", response_model=AvatarUpdateResponse)
async def upload_avatar(
    user_id: str,
    avatar: Optional[UploadFile] = File(None),
    user: Dict[str, Any] = Depends(get_current_user),
    services: MediaServices = Depends(get_services),
):
    """
    Upload a new avatar.

    The image is cropped to a 400x400 WEBP before it is stored, then every
    cached derivative of the user is invalidated.
    """
    if not can_modify(user, user_id):
        raise HTTPException(status_code=403, detail="You do not have permission to modify this avatar")

    data = await _read_upload(avatar)
    optimized = await _optimize_upload(data, services.avatar_cache.fit)

    try:
        updated = await services.avatar_store.upload_original(
            user_id,
            optimized,
            _upload_filename("avatar", user_id),
            OUTPUT_MIME,
        )
    except DerivativeCacheError as e:
        logger.error(f"[MediaAPI] Avatar upload failed for {user_id}: {e.message}")
        _raise_http(e)

    services.avatar_cache.invalidate(user_id)
    services.avatar_cache.put(user_id, Variant.ORIGINAL, optimized)

    logger.info(f"[MediaAPI] Avatar updated: {user_id} ({len(data)} -> {len(optimized)} bytes)")
    return AvatarUpdateResponse(
        success=True,
        message="Avatar updated successfully",
        user=AvatarRef(id=updated.get("id", user_id), avatar=updated.get(services.avatar_store.field)),
    )


@users_router.delete("/{user_id}/avatar", response_model=AvatarUpdateResponse)
async def delete_avatar(
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    services: MediaServices = Depends(get_services),
):
    """Remove a user's avatar and drop its cached derivatives."""
    if not can_modify(user, user_id):
        raise HTTPException(status_code=403, detail="You do not have permission to delete this avatar")

    try:
        updated = await services.avatar_store.delete_original(user_id)
    except DerivativeCacheError as e:
        logger.error(f"[MediaAPI] Avatar delete failed for {user_id}: {e.message}")
        _raise_http(e)

    services.avatar_cache.invalidate(user_id)

    return AvatarUpdateResponse(
        success=True,
        message="Avatar deleted successfully",
        user=AvatarRef(id=updated.get("id", user_id), avatar=updated.get(services.avatar_store.field) or None),
    )


@users_router.get("/{user_id}", response_model=UserInfoResponse)
async def get_user(
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    services: MediaServices = Depends(get_services),
):
    """Public profile fields plus the avatar URL served by this API."""
    try:
        record = await services.storage.get_record(
            services.avatar_store.collection,
            user_id,
            fields=f"id,username,email,created,{services.avatar_store.field}",
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except DerivativeCacheError as e:
        _raise_http(e)

    avatar = record.get(services.avatar_store.field) or None
    return UserInfoResponse(
        id=record.get("id", user_id),
        username=record.get("username"),
        email=record.get("email"),
        created=record.get("created"),
        avatar=avatar,
        avatarUrl=f"{config.PUBLIC_BASE_URL}/api/users/{user_id}/avatar" if avatar else None,
    )


# ============================================
# Generic image endpoints
# ============================================

@images_router.get("/{image_id}")
async def get_image(
    image_id: str,
    size: str = Query(Variant.MEDIUM.value, description="small, medium, large or original"),
    download: bool = Query(False, description="Serve as an attachment"),
    services: MediaServices = Depends(get_services),
):
    """Serve a generic image, fitted inside the variant box without upscaling."""
    return await _serve_derivative(services.image_cache, image_id, size, download, "image")


@images_router.post("", response_model=ImageUpdateResponse)
async def create_image(
    image: Optional[UploadFile] = File(None),
    user: Dict[str, Any] = Depends(get_current_user),
    services: MediaServices = Depends(get_services),
):
    """Store a new image owned by the caller (at most 800x800)."""
    data = await _read_upload(image)
    optimized = await _optimize_upload(data, services.image_cache.fit)

    try:
        created = await services.image_store.create_with_original(
            optimized,
            _upload_filename("image"),
            OUTPUT_MIME,
            fields={"owner": user["id"]},
        )
    except DerivativeCacheError as e:
        logger.error(f"[MediaAPI] Image create failed: {e.message}")
        _raise_http(e)

    image_id = created.get("id")
    if image_id:
        services.image_cache.put(image_id, Variant.ORIGINAL, optimized)

    return ImageUpdateResponse(
        success=True,
        message="Image created successfully",
        image=ImageRef(id=image_id or "", image=created.get(services.image_store.field), owner=user["id"]),
    )


@images_router.put("/{image_id}", response_model=ImageUpdateResponse)
async def replace_image(
    image_id: str,
    image: Optional[UploadFile] = File(None),
    user: Dict[str, Any] = Depends(get_current_user),
    services: MediaServices = Depends(get_services),
):
    """Replace an image's original and invalidate its derivatives."""
    record = await _get_owned_image(services, image_id, user)
    data = await _read_upload(image)
    optimized = await _optimize_upload(data, services.image_cache.fit)

    try:
        updated = await services.image_store.upload_original(
            image_id,
            optimized,
            _upload_filename("image", image_id),
            OUTPUT_MIME,
        )
    except DerivativeCacheError as e:
        logger.error(f"[MediaAPI] Image replace failed for {image_id}: {e.message}")
        _raise_http(e)

    services.image_cache.invalidate(image_id)
    services.image_cache.put(image_id, Variant.ORIGINAL, optimized)

    return ImageUpdateResponse(
        success=True,
        message="Image updated successfully",
        image=ImageRef(id=image_id, image=updated.get(services.image_store.field), owner=record.get("owner")),
    )


@images_router.delete("/{image_id}", response_model=ImageUpdateResponse)
async def delete_image(
    image_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    services: MediaServices = Depends(get_services),
):
    """Remove an image's original and drop its cached derivatives."""
    record = await _get_owned_image(services, image_id, user)

    try:
        await services.image_store.delete_original(image_id)
    except DerivativeCacheError as e:
        logger.error(f"[MediaAPI] Image delete failed for {image_id}: {e.message}")
        _raise_http(e)

    services.image_cache.invalidate(image_id)

    return ImageUpdateResponse(
        success=True,
        message="Image deleted successfully",
        image=ImageRef(id=image_id, image=None, owner=record.get("owner")),
    )


# ============================================
# Cache management
# ============================================

@cache_router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    include_entries: bool = Query(False, description="List cached keys per cache"),
    services: MediaServices = Depends(get_services),
):
    """Entry counts, sizes and hit rates of every derivative cache."""
    caches = services.caches()
    return CacheStatsResponse(
        success=True,
        caches={kind: cache.stats() for kind, cache in caches.items()},
        entries={kind: cache.list_entries() for kind, cache in caches.items()} if include_entries else {},
    )


@cache_router.delete("/{kind}/{resource_id}", response_model=InvalidateResponse)
async def invalidate_cache(
    kind: str,
    resource_id: str,
    size: Optional[str] = Query(None, description="Drop only this variant"),
    user: Dict[str, Any] = Depends(get_current_user),
    services: MediaServices = Depends(get_services),
):
    """
    Manually invalidate cached derivatives (admin only).

    Without a size every variant of the resource is dropped.
    """
    if not is_admin(user):
        raise HTTPException(status_code=403, detail="Admin privileges required")

    cache = services.caches().get(kind)
    if cache is None:
        raise HTTPException(status_code=404, detail=f"Unknown cache: {kind}")

    if size is None:
        removed = cache.invalidate(resource_id)
    else:
        removed = int(cache.invalidate_key(resource_id, size))

    return InvalidateResponse(
        success=True,
        kind=kind,
        resource_id=resource_id,
        variant=size,
        removed_entries=removed,
    )


# ============================================
# Health
# ============================================

@health_router.get("/health")
async def health_check(services: MediaServices = Depends(get_services)):
    """Health check endpoint; 503 when the storage service is unreachable."""
    try:
        await services.storage.health_check()
    except DerivativeCacheError as e:
        return JSONResponse(status_code=503, content={
            "status": "ERROR",
            "service": "storage",
            "error": e.message,
        })

    return JSONResponse(content={
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "media-api",
        "caches": {kind: cache.stats() for kind, cache in services.caches().items()},
    })
