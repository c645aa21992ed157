"""
Opportunity Board - Dashboard Facade Tests
==========================================
"""

import asyncio

import pytest_asyncio

from opportunity_board.core.board import OpportunityBoard
from opportunity_board.core.errors import InputValidationError, RemoteError
from opportunity_board.core.models import OpportunityStatus, Partition, RoleStatus

from tests.fake_remote import CompletingRemote, FakeRemote


@pytest_asyncio.fixture
async def board(remote: FakeRemote):
    board = OpportunityBoard(remote, serialize=False, refetch_on_invalidate=True)
    await board.start()
    yield board
    await board.aclose()


def _ids(opportunities) -> list[str]:
    return [o.id for o in opportunities]


class TestStartup:
    """Tests for loading the board."""

    async def test_start_loads_every_partition(self, board, remote):
        assert _ids(board.in_progress) == ["O1", "O3"]
        assert _ids(board.on_hold) == ["O2"]
        assert _ids(board.completed) == ["O4"]
        assert len(remote.calls_to("list_opportunities")) == 3
        assert board.store.stale_keys() == ()

    async def test_context_manager_closes_store(self, remote):
        async with OpportunityBoard(remote) as board:
            assert _ids(board.on_hold) == ["O2"]
        assert board.store.closed

    async def test_read_validation_error_is_exposed(self, remote):
        remote.fail("list_opportunities", InputValidationError("Bad", field_errors={"roles": ["invalid"]}))

        async with OpportunityBoard(remote) as board:
            assert board.has_validation_error
            assert board.validation_error.errors_for("roles") == ["invalid"]

    async def test_is_refetching_while_reloading(self, board, remote):
        gate = remote.hold("list_opportunities")
        board.loader.load(Partition.ON_HOLD)
        await asyncio.sleep(0)

        assert board.is_refetching

        gate.set()
        await board.loader.wait()
        assert not board.is_refetching


class TestViews:
    """Filtered partitions, table rows and month groups."""

    async def test_visible_applies_filters(self, board):
        board.set_filters(client="acme")

        assert _ids(board.visible(Partition.IN_PROGRESS)) == ["O1"]
        assert _ids(board.in_progress) == ["O1", "O3"]

    async def test_set_filters_keeps_other_fields(self, board):
        board.set_filters(client="globex")
        filters = board.set_filters(grades=["SC"])

        assert filters.client == "globex"
        assert _ids(board.visible(Partition.IN_PROGRESS)) == ["O3"]

    async def test_clear_filters(self, board):
        board.set_filters(client="acme", needs_hire="yes")
        board.clear_filters()

        assert not board.filters.has_active_filters
        assert _ids(board.visible(Partition.IN_PROGRESS)) == ["O1", "O3"]

    async def test_rows_and_month_groups(self, board):
        rows = board.rows(Partition.IN_PROGRESS)

        assert [(r.opportunity_id, r.role_id) for r in rows] == [("O1", None), ("O3", "r31"), ("O3", "r32")]

        groups = board.month_groups(Partition.IN_PROGRESS)
        assert [g.month_key for g in groups] == ["2024-01"]
        assert _ids(groups[0].opportunities) == ["O1", "O3"]

    async def test_client_filter_commits_into_filters(self, board):
        board.client_filter.set("<i>Globex</i>")
        board.client_filter.flush()

        assert board.filters.client == "Globex"
        assert _ids(board.visible(Partition.IN_PROGRESS)) == ["O3"]


class TestCommands:
    """Mutations through the board."""

    async def test_settled_mutation_refetches_partition(self, board, remote):
        result = await board.add_role("O1", {"roleName": "Tech Lead", "requiredGrade": "SC"})
        await board.loader.wait()

        assert result.ok
        assert [args[0] for args in remote.calls_to("list_opportunities")][3:] == [Partition.IN_PROGRESS]
        assert [r.id for r in board.store.find("O1")[1].roles] == [result.value.roles[0].id]
        assert not board.store.is_stale(Partition.IN_PROGRESS)

    async def test_no_refetch_when_disabled(self, remote):
        async with OpportunityBoard(remote, refetch_on_invalidate=False) as board:
            await board.update_opportunity("O1", {"probability": 95})

            assert board.store.is_stale(Partition.IN_PROGRESS)
            assert len(remote.calls_to("list_opportunities")) == 3

            await board.refresh()

            assert not board.store.is_stale(Partition.IN_PROGRESS)
            assert board.store.find("O1")[1].probability == 95

    async def test_failure_records_notice(self, board, remote):
        remote.fail("update_opportunity", RemoteError("Server unavailable", status_code=503))

        result = await board.update_opportunity("O1", {"probability": 10})

        assert not result.ok
        assert board.last_error_notice.message == "Server unavailable"
        assert board.store.find("O1")[1].probability == 80

        board.dismiss_error()
        assert board.last_error_notice is None

    async def test_is_pending_during_mutation(self, board, remote):
        gate = remote.hold("update_opportunity")

        task = asyncio.create_task(board.update_opportunity("O1", {"probability": 10}))
        await asyncio.sleep(0)

        assert board.is_pending(Partition.IN_PROGRESS)
        assert not board.is_pending(Partition.ON_HOLD)

        gate.set()
        await task
        assert not board.is_pending()

    async def test_move_helpers(self, board):
        result = await board.move_to_on_hold("O1")
        await board.loader.wait()

        assert result.ok
        assert set(_ids(board.on_hold)) == {"O1", "O2"}
        assert _ids(board.in_progress) == ["O3"]

    async def test_auto_complete_moves_finished_opportunity(self, remote):
        async with OpportunityBoard(remote, auto_complete=True) as board:
            result = await board.update_role_status("O2", "r21", RoleStatus.WON)
            await board.loader.wait()

            assert result.ok
            assert board.on_hold == ()
            assert set(_ids(board.completed)) == {"O2", "O4"}
            assert board.store.find("O2")[1].status == OpportunityStatus.DONE

    async def test_no_auto_complete_by_default(self, board):
        await board.update_role_status("O2", "r21", RoleStatus.WON)
        await board.loader.wait()

        assert _ids(board.on_hold) == ["O2"]


class TestServerDrivenChanges:
    """The board follows what the server decides."""

    async def test_server_completion_keeps_opportunity_visible(self, remote):
        completing = CompletingRemote(tuple(remote.opportunities.values()))

        async with OpportunityBoard(completing, refetch_on_invalidate=True) as board:
            result = await board.update_role_status("O2", "r21", RoleStatus.STAFFED)

            assert result.value.status == OpportunityStatus.DONE
            assert board.store.find("O2")[0] == Partition.COMPLETED

            await board.loader.wait()

            assert board.on_hold == ()
            assert set(_ids(board.completed)) == {"O2", "O4"}
            assert Partition.COMPLETED in [args[0] for args in completing.calls_to("list_opportunities")][3:]

    async def test_invalid_pending_create_does_not_break_filtered_view(self, board, remote):
        gate = remote.hold("create_opportunity")
        board.set_filters(probability=(10, 90))

        task = asyncio.create_task(board.create_opportunity({
            "clientName": "Initech",
            "opportunityName": "Rewrite",
            "expectedStartDate": "2024-09-01",
            "probability": "high",
        }))
        await asyncio.sleep(0)

        assert len(board.in_progress) == 3
        assert _ids(board.visible(Partition.IN_PROGRESS)) == ["O1", "O3"]

        gate.set()
        result = await task

        assert isinstance(result.error, InputValidationError)
        assert _ids(board.in_progress) == ["O1", "O3"]
