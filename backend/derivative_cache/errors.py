"""
Derivative Cache Errors

Error taxonomy shared by the derivative cache, the storage client and the
HTTP routes. Each kind carries the HTTP status the boundary maps it to.
"""

from typing import Any, Dict, Optional


class DerivativeCacheError(Exception):
    """Base class for every error surfaced by the derivative cache."""

    kind = "internal_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        resource_id: Optional[str] = None,
        variant: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id
        self.variant = variant

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        """Structured form used as the HTTP error detail."""
        payload: Dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
        }
        if include_details and self.__cause__ is not None:
            payload["details"] = str(self.__cause__)
        return payload


class NotFoundError(DerivativeCacheError):
    """The resource, or its original image, does not exist."""

    kind = "not_found"
    status_code = 404


class UpstreamFetchError(DerivativeCacheError):
    """The storage service was unreachable, timed out or answered non-2xx."""

    kind = "upstream_fetch_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        resource_id: Optional[str] = None,
        variant: Optional[str] = None,
        upstream_status: Optional[int] = None,
    ):
        super().__init__(message, resource_id=resource_id, variant=variant)
        self.upstream_status = upstream_status


class TransformError(DerivativeCacheError):
    """Input bytes could not be decoded, resized or re-encoded."""

    kind = "transform_error"
    status_code = 500


class ValidationError(DerivativeCacheError):
    """Caller input is unusable (e.g. an empty resource id)."""

    kind = "validation_error"
    status_code = 400
