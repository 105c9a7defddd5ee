"""
Storage Service Client

Async client for the external record/auth/file service (PocketBase API).

Handles:
- Record reads and updates (including multipart file uploads)
- File downloads for original images
- Token refresh for request authentication
- Mapping upstream failures onto the derivative cache error taxonomy
"""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from derivative_cache import (
    NotFoundError,
    ResourceMeta,
    UpstreamFetchError,
)

logger = logging.getLogger(__name__)

# (filename, bytes, content type)
FileTuple = Tuple[str, bytes, str]


class AuthenticationError(Exception):
    """Token missing, invalid or expired."""


class PocketBaseClient:
    """
    Thin wrapper around one httpx.AsyncClient.

    Usage:
        client = PocketBaseClient("http://pocketbase:8090")
        record = await client.get_record("users", user_id)
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            follow_redirects=True,
        )

    async def close(self):
        """Close HTTP client."""
        await self.http_client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request and translate failures into cache errors."""
        try:
            response = await self.http_client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"[StorageClient] Timeout: {method} {path}")
            raise UpstreamFetchError("Storage service timeout") from e
        except httpx.HTTPError as e:
            logger.error(f"[StorageClient] Transport error: {method} {path} - {e}")
            raise UpstreamFetchError("Storage service unreachable") from e

        if response.status_code == 404:
            raise NotFoundError(f"Not found: {path}")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"[StorageClient] HTTP error {response.status_code}: {method} {path}")
            raise UpstreamFetchError(
                f"Storage service returned {response.status_code}",
                upstream_status=response.status_code,
            ) from e

        return response

    # ============================================
    # Records
    # ============================================

    async def get_record(
        self,
        collection: str,
        record_id: str,
        fields: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"fields": fields} if fields else None
        response = await self._request(
            "GET",
            f"/api/collections/{collection}/records/{record_id}",
            params=params,
        )
        return response.json()

    async def create_record(
        self,
        collection: str,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, FileTuple]] = None,
    ) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"/api/collections/{collection}/records",
            data=data,
            files=files,
        )
        return response.json()

    async def update_record(
        self,
        collection: str,
        record_id: str,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, FileTuple]] = None,
    ) -> Dict[str, Any]:
        """
        Update a record.

        JSON body when no files are given (so fields can be nulled),
        multipart otherwise.
        """
        path = f"/api/collections/{collection}/records/{record_id}"
        if files:
            response = await self._request("PATCH", path, data=data, files=files)
        else:
            response = await self._request("PATCH", path, json=data or {})
        return response.json()

    # ============================================
    # Files
    # ============================================

    async def download_file(self, collection_id: str, record_id: str, filename: str) -> bytes:
        response = await self._request("GET", f"/api/files/{collection_id}/{record_id}/{filename}")
        return response.content

    # ============================================
    # Auth / health
    # ============================================

    async def auth_refresh(self, token: str, collection: str = "users") -> Dict[str, Any]:
        """
        Validate a token and return the authenticated record.

        Raises:
            AuthenticationError: Token rejected by the storage service
            UpstreamFetchError: Storage service unreachable
        """
        try:
            response = await self._request(
                "POST",
                f"/api/collections/{collection}/auth-refresh",
                headers={"Authorization": token},
            )
        except NotFoundError as e:
            raise AuthenticationError("Invalid or expired token") from e
        except UpstreamFetchError as e:
            if e.upstream_status in (400, 401, 403):
                raise AuthenticationError("Invalid or expired token") from e
            raise
        return response.json().get("record") or {}

    async def health_check(self) -> Dict[str, Any]:
        response = await self._request("GET", "/api/health")
        return response.json()


class RecordFileStore:
    """
    One collection's file field, seen as a store of original images.

    Implements the OriginalStore protocol consumed by DerivativeCache.
    """

    def __init__(self, client: PocketBaseClient, collection: str, field: str):
        self.client = client
        self.collection = collection
        self.field = field

    async def get_resource_meta(self, resource_id: str) -> ResourceMeta:
        try:
            record = await self.client.get_record(
                self.collection,
                resource_id,
                fields=f"id,collectionId,{self.field}",
            )
        except NotFoundError as e:
            raise NotFoundError(
                f"Resource '{resource_id}' not found",
                resource_id=resource_id,
            ) from e

        filename = record.get(self.field) or None
        return ResourceMeta(
            resource_id=resource_id,
            has_original=bool(filename),
            collection_id=record.get("collectionId") or self.collection,
            filename=filename,
        )

    async def fetch_original(self, resource_id: str, meta: Optional[ResourceMeta] = None) -> bytes:
        if meta is None:
            meta = await self.get_resource_meta(resource_id)
        if not meta.has_original:
            raise NotFoundError(f"No original image for resource '{resource_id}'", resource_id=resource_id)

        try:
            data = await self.client.download_file(meta.collection_id, resource_id, meta.filename)
        except NotFoundError as e:
            raise NotFoundError(
                f"Original image file missing for resource '{resource_id}'",
                resource_id=resource_id,
            ) from e

        logger.debug(f"[StorageClient] Fetched original {self.collection}/{resource_id} ({len(data)} bytes)")
        return data

    async def upload_original(
        self,
        resource_id: str,
        data: bytes,
        filename: str,
        content_type: str,
    ) -> Dict[str, Any]:
        """Replace the resource's original image."""
        return await self.client.update_record(
            self.collection,
            resource_id,
            files={self.field: (filename, data, content_type)},
        )

    async def create_with_original(
        self,
        data: bytes,
        filename: str,
        content_type: str,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Create a new record holding the given original image."""
        return await self.client.create_record(
            self.collection,
            data=fields,
            files={self.field: (filename, data, content_type)},
        )

    async def delete_original(self, resource_id: str) -> Dict[str, Any]:
        """Clear the resource's original image."""
        return await self.client.update_record(self.collection, resource_id, data={self.field: None})
