"""
Service container shared by the routers.

The application owns one storage client and one derivative cache per
resource kind; routes reach them through the get_services dependency.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Request

from derivative_cache import DerivativeCache, FitPolicy

from . import config
from .storage_client import PocketBaseClient, RecordFileStore

AVATAR_KIND = "avatars"
IMAGE_KIND = "images"


@dataclass
class MediaServices:
    storage: PocketBaseClient
    avatar_store: RecordFileStore
    image_store: RecordFileStore
    avatar_cache: DerivativeCache
    image_cache: DerivativeCache

    def caches(self) -> Dict[str, DerivativeCache]:
        return {
            AVATAR_KIND: self.avatar_cache,
            IMAGE_KIND: self.image_cache,
        }


def build_services(storage: Optional[PocketBaseClient] = None) -> MediaServices:
    """Wire the storage client, the per-kind stores and their caches."""
    storage = storage or PocketBaseClient(
        config.STORAGE_BASE_URL,
        timeout=config.STORAGE_TIMEOUT_SECONDS,
    )
    avatar_store = RecordFileStore(storage, config.AVATAR_COLLECTION, config.AVATAR_FIELD)
    image_store = RecordFileStore(storage, config.IMAGE_COLLECTION, config.IMAGE_FIELD)
    return MediaServices(
        storage=storage,
        avatar_store=avatar_store,
        image_store=image_store,
        avatar_cache=DerivativeCache(avatar_store, fit=FitPolicy.COVER, name=AVATAR_KIND),
        image_cache=DerivativeCache(image_store, fit=FitPolicy.INSIDE, name=IMAGE_KIND),
    )


def get_services(request: Request) -> MediaServices:
    return request.app.state.services
