"""Deterministic avatar URIs.

Avatars are rendered by DiceBear from a seed, so the same name always
yields the same image and nothing needs to be stored.
"""

from __future__ import annotations

from enum import Enum
from urllib.parse import urlencode

from src.meetai.config import get_settings


class AvatarVariant(str, Enum):
    """DiceBear styles used by the service."""

    BOTTTS_NEUTRAL = "bottts-neutral"
    INITIALS = "initials"


def generate_avatar_uri(seed: str, variant: AvatarVariant, base_url: str | None = None) -> str:
    """Build an SVG avatar URL for ``seed`` in the given style.

    Args:
        seed: Any string; usually a display name.
        variant: Avatar style.
        base_url: Override for the DiceBear API root.

    Returns:
        Absolute URL of the SVG image.
    """
    root = (base_url or get_settings().AVATAR_BASE_URL).rstrip("/")
    return f"{root}/{variant.value}/svg?{urlencode({'seed': seed})}"
