"""
Bearer token authentication backed by the storage service.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException

from derivative_cache import UpstreamFetchError

from .services import MediaServices, get_services
from .storage_client import AuthenticationError

logger = logging.getLogger(__name__)


def is_admin(user: Dict[str, Any]) -> bool:
    """Admin flag is a JSON boolean; string values are not accepted."""
    return user.get("admin") is True


def can_modify(user: Dict[str, Any], owner_id: Optional[str]) -> bool:
    return (owner_id is not None and user.get("id") == owner_id) or is_admin(user)


async def get_current_user(
    authorization: Optional[str] = Header(None),
    services: MediaServices = Depends(get_services),
) -> Dict[str, Any]:
    """Resolve the Authorization header to the authenticated user record."""
    token = (authorization or "").strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Authentication token required")

    try:
        user = await services.storage.auth_refresh(token)
    except AuthenticationError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    except UpstreamFetchError as e:
        logger.error(f"[MediaAPI] Auth refresh failed: {e.message}")
        raise HTTPException(status_code=502, detail=e.to_dict())

    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user
