"""Application services."""

from jellysync.application.services.sync import SyncDispatcher

__all__ = ["SyncDispatcher"]
