"""Domain ports (interfaces) for external collaborators."""

from abc import ABC, abstractmethod

from jellysync.domain.dtos import (
    ActivitiesPage,
    ItemPeople,
    ItemsPage,
    JellyfinItem,
    JellyfinLibrary,
    JellyfinUser,
    MinimalItem,
)


# Hey future me, this is the ONLY contract the sync services have with a media server.
# JellyfinClient implements it over HTTP, tests implement it with AsyncMock(spec=...).
# Every method raises ExternalServiceError on failure - except is_server_healthy(), which
# must NEVER raise (the deleted-items guard relies on a plain True/False).
class IMediaServerClient(ABC):
    """Port for media server API operations."""

    @abstractmethod
    async def is_server_healthy(self) -> bool:
        """Cheap liveness check.

        Returns:
            True if the server answered, False otherwise (never raises)
        """
        pass

    @abstractmethod
    async def get_users(self) -> list[JellyfinUser]:
        """List all users of the server."""
        pass

    @abstractmethod
    async def get_libraries(self) -> list[JellyfinLibrary]:
        """List all top-level libraries (media folders)."""
        pass

    @abstractmethod
    async def get_items_page(
        self, library_id: str, start_index: int, limit: int
    ) -> ItemsPage:
        """
        Fetch one page of items of a library (recursive).

        Args:
            library_id: Library (parent) id
            start_index: Offset of the first item
            limit: Page size

        Returns:
            Page of items plus the server-side total count. raw_count and rejected
            cover entries that could not be parsed
        """
        pass

    @abstractmethod
    async def get_all_items_minimal(self, library_id: str) -> list[MinimalItem]:
        """Fetch every item of a library with identity fields only."""
        pass

    @abstractmethod
    async def get_recently_added_items(
        self, library_id: str, limit: int
    ) -> list[JellyfinItem]:
        """Fetch the most recently added items of a library, newest first."""
        pass

    @abstractmethod
    async def get_activities(
        self, start_index: int, limit: int
    ) -> ActivitiesPage:
        """
        Fetch one page of the activity log, newest first.

        Args:
            start_index: Offset of the first entry
            limit: Page size

        Returns:
            Entries ordered newest first. raw_count counts every entry the server
            returned, including the ones listed in rejected
        """
        pass

    @abstractmethod
    async def get_items_people(self, item_ids: list[str]) -> list[ItemPeople]:
        """Fetch people (cast and crew) for a set of items."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        pass


__all__ = ["IMediaServerClient"]
