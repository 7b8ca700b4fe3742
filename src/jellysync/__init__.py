"""jellysync - Jellyfin library, item and activity sync with item re-identification."""

__version__ = "0.1.0"
