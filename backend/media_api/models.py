"""
Response models for the media API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AvatarRef(BaseModel):
    id: str
    avatar: Optional[str] = None


class AvatarUpdateResponse(BaseModel):
    success: bool
    message: str
    user: AvatarRef


class ImageRef(BaseModel):
    id: str
    image: Optional[str] = None
    owner: Optional[str] = None


class ImageUpdateResponse(BaseModel):
    success: bool
    message: str
    image: ImageRef


class UserInfoResponse(BaseModel):
    id: str
    username: Optional[str] = None
    email: Optional[str] = None
    created: Optional[str] = None
    avatar: Optional[str] = None
    avatarUrl: Optional[str] = Field(None, description="Public URL of the medium avatar")


class CacheStats(BaseModel):
    name: str
    fit: str
    output_format: str
    total_entries: int
    total_size_bytes: int
    total_size_mb: float
    hits: int
    misses: int
    hit_rate_percent: float
    in_flight: int


class CacheStatsResponse(BaseModel):
    success: bool
    caches: Dict[str, CacheStats]
    entries: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)


class InvalidateResponse(BaseModel):
    success: bool
    kind: str
    resource_id: str
    variant: Optional[str] = None
    removed_entries: int
