"""Tests for the jellysync command line entry point."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
from pytest_mock import MockerFixture

from jellysync import cli
from jellysync.application.services.sync.metrics import SyncMetricsTracker
from jellysync.domain.exceptions import EntityNotFoundException


def succeeded():
    return SyncMetricsTracker().result(None)


def failed():
    return SyncMetricsTracker().failure(None, "users sync failed: HTTP 401")


@pytest.fixture
def dispatcher(mocker: MockerFixture) -> AsyncMock:
    """Replace the runtime so no database or logging setup happens."""
    fake = AsyncMock()

    @asynccontextmanager
    async def fake_runtime():
        yield fake

    mocker.patch("jellysync.cli.sync_runtime", fake_runtime)
    return fake


class TestParser:
    """Argument validation."""

    def test_unknown_sync_type_is_rejected(self) -> None:
        with pytest.raises(SystemExit):
            cli.main(["everything"])

    def test_library_id_only_for_items(self, dispatcher: AsyncMock) -> None:
        with pytest.raises(SystemExit):
            cli.main(["users", "--library-id", "lib-1"])
        dispatcher.run.assert_not_awaited()

    def test_intelligent_only_for_recent_activities(self, dispatcher: AsyncMock) -> None:
        with pytest.raises(SystemExit):
            cli.main(["activities", "--intelligent"])


class TestMain:
    """Dispatching and exit codes."""

    def test_single_server_with_options(self, dispatcher: AsyncMock) -> None:
        dispatcher.run.return_value = succeeded()

        code = cli.main(["items", "--server-id", "3", "--library-id", "lib-1"])

        assert code == cli.EXIT_OK
        dispatcher.run.assert_awaited_once_with(3, "items", library_id="lib-1")

    def test_all_servers_exit_code_reflects_errors(
        self, dispatcher: AsyncMock, mocker: MockerFixture
    ) -> None:
        all_servers = mocker.patch(
            "jellysync.cli.sync_all_servers",
            AsyncMock(return_value={1: succeeded(), 2: failed()}),
        )

        code = cli.main(["recent_activities", "--intelligent"])

        assert code == cli.EXIT_SYNC_FAILED
        all_servers.assert_awaited_once_with(
            dispatcher, "recent_activities", intelligent=True
        )

    def test_unknown_server(self, dispatcher: AsyncMock) -> None:
        dispatcher.run.side_effect = EntityNotFoundException("Server", 9)

        assert cli.main(["users", "--server-id", "9"]) == cli.EXIT_UNKNOWN_SERVER
