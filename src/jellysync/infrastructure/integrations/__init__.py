"""External service integrations."""

from .jellyfin_client import JellyfinClient

__all__ = ["JellyfinClient"]
