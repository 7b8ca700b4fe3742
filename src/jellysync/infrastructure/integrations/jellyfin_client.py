"""Jellyfin HTTP client implementation."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx

from jellysync.config.settings import JellyfinSettings
from jellysync.domain.dtos import (
    ActivitiesPage,
    ItemPeople,
    ItemsPage,
    JellyfinActivity,
    JellyfinItem,
    JellyfinLibrary,
    JellyfinUser,
    MinimalItem,
)
from jellysync.domain.entities import MediaServer
from jellysync.domain.exceptions import ExternalServiceError, ValidationError
from jellysync.domain.ports import IMediaServerClient
from jellysync.infrastructure.observability.sync_log import format_error, redact_sensitive

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fields requested for full item payloads. Anything not listed here is missing from
# BaseItemDto responses, so keep it in sync with item_mapper.
ITEM_FIELDS = ",".join(
    [
        "DateCreated",
        "Etag",
        "Genres",
        "OriginalTitle",
        "Overview",
        "ParentId",
        "Path",
        "PrimaryImageAspectRatio",
        "ProviderIds",
        "SortName",
        "Tags",
        "Width",
        "Height",
        "SeriesStudio",
        "CanDelete",
        "CanDownload",
        "ChannelInfo",
        "MediaSources",
    ]
)
MINIMAL_ITEM_FIELDS = "ProviderIds"
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class JellyfinClient(IMediaServerClient):
    """HTTP client for one Jellyfin server."""

    # Hey future me, one JellyfinClient == one server. The api_key comes from the servers
    # table, the rest (timeouts, retries) from JellyfinSettings. The httpx client is created
    # lazily and MUST be closed - the dispatcher does that in a finally block.
    def __init__(self, server: MediaServer, settings: JellyfinSettings) -> None:
        """
        Initialize Jellyfin client.

        Args:
            server: Server to talk to (url + api key)
            settings: Client settings
        """
        self.server = server
        self.settings = settings
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            s = self.settings
            authorization = (
                f'MediaBrowser Client="{s.client_name}", Device="{s.device_name}", '
                f'DeviceId="{s.device_id}", Version="{s.client_version}", '
                f'Token="{self.server.api_key}"'
            )
            self._client = httpx.AsyncClient(
                base_url=self.server.url.rstrip("/"),
                headers={
                    "Authorization": authorization,
                    "X-Emby-Token": self.server.api_key,
                    "Accept": "application/json",
                    "User-Agent": f"{s.client_name}/{s.client_version}",
                },
                timeout=s.request_timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Yo, this is the ONLY place that retries. Transport errors and 429/5xx get up to
    # max_retries more attempts with exponential backoff; 4xx (bad key, unknown id) fail at
    # once. Callers never see httpx exceptions, only ExternalServiceError.
    async def _request(
        self, method: str, path: str, params: dict[str, Any] | None = None
    ) -> Any:
        """
        Perform a request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to the server URL
            params: Query parameters

        Returns:
            Decoded JSON (dict or list)

        Raises:
            ExternalServiceError: If the request fails after all retries
        """
        client = await self._get_client()
        delay = self.settings.retry_initial_delay
        attempts = self.settings.max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                response = await client.request(method, path, params=params)
                if (
                    response.status_code in RETRYABLE_STATUS_CODES
                    and attempt < attempts
                ):
                    raise httpx.HTTPStatusError(
                        f"Retryable status {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                response.raise_for_status()
                if not response.content:
                    return None
                return response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status not in RETRYABLE_STATUS_CODES or attempt >= attempts:
                    raise ExternalServiceError(
                        f"Jellyfin request failed: {format_error(e)}", status_code=status
                    ) from e
            except httpx.HTTPError as e:
                if attempt >= attempts:
                    raise ExternalServiceError(
                        f"Jellyfin request failed: {method} {path}: {format_error(e)}"
                    ) from e

            logger.warning(
                "jellyfin.request_retry",
                extra={
                    "server": self.server.name,
                    "path": path,
                    "params": redact_sensitive(params or {}),
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "delay_s": delay,
                },
            )
            await asyncio.sleep(delay)
            delay *= 2

        raise ExternalServiceError(f"Jellyfin request failed: {method} {path}")

    def _parse_page(
        self, raw_items: list[dict[str, Any]], parser: Callable[[dict[str, Any]], T], kind: str
    ) -> tuple[list[T], list[str]]:
        """Parse a response list; entries that fail from_api() come back as "id: reason"."""
        parsed: list[T] = []
        rejected: list[str] = []
        for position, raw in enumerate(raw_items):
            try:
                parsed.append(parser(raw))
            except ValidationError as e:
                key = raw.get("Id")
                rejected.append(f"{key or f'#{position}'}: invalid {kind} payload: {e.message}")
                logger.warning(
                    "jellyfin.invalid_payload_skipped",
                    extra={"server": self.server.name, "kind": kind, "error": e.message},
                )
        return parsed, rejected

    def _parse_many(
        self, raw_items: list[dict[str, Any]], parser: Callable[[dict[str, Any]], T], kind: str
    ) -> list[T]:
        parsed, _rejected = self._parse_page(raw_items, parser, kind)
        return parsed

    # ===== HEALTH =====

    async def is_server_healthy(self) -> bool:
        try:
            client = await self._get_client()
            response = await client.get("/System/Info")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(
                "jellyfin.health_check_failed",
                extra={"server": self.server.name, "error": format_error(e)},
            )
            return False

    # ===== USERS / LIBRARIES =====

    async def get_users(self) -> list[JellyfinUser]:
        data = await self._request("GET", "/Users")
        return self._parse_many(data or [], JellyfinUser.from_api, "user")

    async def get_libraries(self) -> list[JellyfinLibrary]:
        data = await self._request("GET", "/Library/MediaFolders")
        return self._parse_many(
            (data or {}).get("Items", []), JellyfinLibrary.from_api, "library"
        )

    # ===== ITEMS =====

    async def get_items_page(
        self, library_id: str, start_index: int, limit: int
    ) -> ItemsPage:
        data = await self._request(
            "GET",
            "/Items",
            params={
                "ParentId": library_id,
                "Recursive": "true",
                "StartIndex": start_index,
                "Limit": limit,
                "Fields": ITEM_FIELDS,
                "EnableTotalRecordCount": "true",
                "SortBy": "SortName",
                "SortOrder": "Ascending",
            },
        )
        data = data or {}
        raw_items = data.get("Items", [])
        items, rejected = self._parse_page(raw_items, JellyfinItem.from_api, "item")
        return ItemsPage(
            items=items,
            total_count=int(data.get("TotalRecordCount", len(raw_items))),
            raw_count=len(raw_items),
            rejected=rejected,
        )

    # Listen up, this walks a WHOLE library for the deleted-items snapshot. Only ProviderIds
    # are requested and images/user data are disabled, otherwise big libraries take minutes.
    async def get_all_items_minimal(self, library_id: str) -> list[MinimalItem]:
        page_size = self.settings.minimal_page_size
        start_index = 0
        collected: list[MinimalItem] = []
        while True:
            data = await self._request(
                "GET",
                "/Items",
                params={
                    "ParentId": library_id,
                    "Recursive": "true",
                    "StartIndex": start_index,
                    "Limit": page_size,
                    "Fields": MINIMAL_ITEM_FIELDS,
                    "EnableImages": "false",
                    "EnableUserData": "false",
                    "EnableTotalRecordCount": "true",
                },
            )
            data = data or {}
            raw_items = data.get("Items", [])
            collected.extend(self._parse_many(raw_items, MinimalItem.from_api, "item"))
            start_index += len(raw_items)
            total = int(data.get("TotalRecordCount", 0))
            if not raw_items or len(raw_items) < page_size or start_index >= total:
                return collected

    async def get_recently_added_items(
        self, library_id: str, limit: int
    ) -> list[JellyfinItem]:
        data = await self._request(
            "GET",
            "/Items",
            params={
                "ParentId": library_id,
                "Recursive": "true",
                "Limit": limit,
                "Fields": ITEM_FIELDS,
                "SortBy": "DateCreated",
                "SortOrder": "Descending",
            },
        )
        return self._parse_many(
            (data or {}).get("Items", []), JellyfinItem.from_api, "item"
        )

    async def get_items_people(self, item_ids: list[str]) -> list[ItemPeople]:
        if not item_ids:
            return []
        data = await self._request(
            "GET",
            "/Items",
            params={"Ids": ",".join(item_ids), "Fields": "People"},
        )
        return self._parse_many(
            (data or {}).get("Items", []), ItemPeople.from_api, "item"
        )

    # ===== ACTIVITIES =====

    async def get_activities(
        self, start_index: int, limit: int
    ) -> ActivitiesPage:
        data = await self._request(
            "GET",
            "/System/ActivityLog/Entries",
            params={"startIndex": start_index, "limit": limit},
        )
        raw_items = (data or {}).get("Items", [])
        activities, rejected = self._parse_page(
            raw_items, JellyfinActivity.from_api, "activity"
        )
        return ActivitiesPage(activities, raw_count=len(raw_items), rejected=rejected)
