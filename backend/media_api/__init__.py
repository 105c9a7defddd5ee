"""
Media API Module

HTTP boundary around the derivative cache: avatar and image endpoints,
user info, cache management and health, backed by the external storage
service.
"""

from .routes_fastapi import cache_router, health_router, images_router, users_router
from .services import MediaServices, build_services
from .storage_client import AuthenticationError, PocketBaseClient, RecordFileStore

__all__ = [
    "users_router",
    "images_router",
    "cache_router",
    "health_router",
    "MediaServices",
    "build_services",
    "PocketBaseClient",
    "RecordFileStore",
    "AuthenticationError",
]
