"""
Derivative Key Model

Identity of a cached derivative: the source resource plus the variant.

Key layout:
    <percent-encoded resource id>|<variant>

The resource id is percent-encoded with no safe characters, so it can never
contain the "|" separator. Two keys therefore share a resource prefix only
when they were built from the same resource id.
"""

from enum import Enum
from typing import Optional, Tuple, Union
from urllib.parse import quote, unquote

from .errors import ValidationError

KEY_SEPARATOR = "|"


class Variant(str, Enum):
    """Named derivative sizes."""
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    ORIGINAL = "original"

    @property
    def size(self) -> Optional[int]:
        """Target square dimension in pixels, None for no resize."""
        return VARIANT_SIZES[self]


class FitPolicy(str, Enum):
    """How an image is fitted into the variant's square box."""
    COVER = "cover"      # Centre crop to a square (avatars)
    INSIDE = "inside"    # Shrink to fit, keep aspect ratio (generic images)


VARIANT_SIZES = {
    Variant.SMALL: 100,
    Variant.MEDIUM: 300,
    Variant.LARGE: 600,
    Variant.ORIGINAL: None,
}

DEFAULT_VARIANT = Variant.MEDIUM


def resolve_variant(value: Union[str, Variant, None]) -> Variant:
    """Map a requested variant to a known one; unknown values fall back to medium."""
    if isinstance(value, Variant):
        return value
    try:
        return Variant(value)
    except ValueError:
        return DEFAULT_VARIANT


def _encode_resource_id(resource_id: str) -> str:
    if not isinstance(resource_id, str) or not resource_id:
        raise ValidationError("Resource id must be a non-empty string", resource_id=resource_id)
    return quote(resource_id, safe="")


def make_key(resource_id: str, variant: Union[str, Variant, None]) -> str:
    """
    Build the cache key for a (resource, variant) pair.

    Args:
        resource_id: Identifier of the source image
        variant: Requested variant (unrecognized values resolve to medium)

    Returns:
        Stable string key

    Raises:
        ValidationError: If resource_id is empty
    """
    return f"{_encode_resource_id(resource_id)}{KEY_SEPARATOR}{resolve_variant(variant).value}"


def belongs_to(key: str, resource_id: str) -> bool:
    """True iff key was produced by make_key(resource_id, <any variant>)."""
    if not resource_id:
        return False
    prefix = quote(resource_id, safe="") + KEY_SEPARATOR
    return key.startswith(prefix)


def parse_key(key: str) -> Tuple[str, Variant]:
    """Inverse of make_key."""
    encoded, sep, variant = key.rpartition(KEY_SEPARATOR)
    if not sep or not encoded:
        raise ValidationError(f"Malformed derivative key: {key!r}")
    try:
        return unquote(encoded), Variant(variant)
    except ValueError:
        raise ValidationError(f"Malformed derivative key: {key!r}") from None
