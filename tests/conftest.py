"""
Opportunity Board - Test Fixtures
=================================

Shared pytest fixtures for all tests.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from opportunity_board.api.client import OpportunityApiClient
from opportunity_board.api.mock_server import create_app
from opportunity_board.core.cache.coordinator import MutationCoordinator
from opportunity_board.core.cache.loader import PartitionLoader
from opportunity_board.core.cache.partition_store import PartitionStore
from opportunity_board.core.cache.patches import OptimisticPatchGenerator
from opportunity_board.core.models import Grade, OpportunityStatus, Partition, RoleStatus

from tests.fake_remote import FakeRemote, make_opportunity, make_role


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ==========================================================================
# Engine Fixtures
# ==========================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> PartitionStore:
    """Empty partition store on a fake clock."""
    return PartitionStore(clock=clock)


@pytest.fixture
def board_data():
    """
    Standard dashboard contents.

    - O1: in progress, no roles
    - O2: on hold, one open role
    - O3: in progress, two open roles
    - O4: completed, one won role
    """
    return {
        Partition.IN_PROGRESS: (
            make_opportunity("O1", client_name="Acme Corp", probability=80),
            make_opportunity(
                "O3",
                client_name="Globex",
                probability=30,
                roles=(make_role("r31"), make_role("r32", required_grade=Grade.SC)),
            ),
        ),
        Partition.ON_HOLD: (
            make_opportunity("O2", status=OpportunityStatus.ON_HOLD, roles=(make_role("r21"),)),
        ),
        Partition.COMPLETED: (
            make_opportunity(
                "O4",
                status=OpportunityStatus.DONE,
                roles=(make_role("r41", status=RoleStatus.WON),),
            ),
        ),
    }


@pytest.fixture
def seeded_store(store: PartitionStore, board_data) -> PartitionStore:
    """Store filled as if every partition had just been read."""
    for key, opportunities in board_data.items():
        store.replace_from_read(key, opportunities)
    return store


@pytest.fixture
def remote(board_data) -> FakeRemote:
    return FakeRemote(tuple(o for opportunities in board_data.values() for o in opportunities))


@pytest.fixture
def patches() -> OptimisticPatchGenerator:
    ids = iter(f"tmp-{n}" for n in range(1, 1000))
    return OptimisticPatchGenerator(temp_id_factory=lambda: next(ids))


@pytest.fixture
def loader(seeded_store: PartitionStore, remote: FakeRemote) -> PartitionLoader:
    return PartitionLoader(seeded_store, remote)


@pytest_asyncio.fixture
async def coordinator(
    seeded_store: PartitionStore,
    remote: FakeRemote,
    loader: PartitionLoader,
    patches: OptimisticPatchGenerator,
) -> AsyncGenerator[MutationCoordinator, None]:
    coordinator = MutationCoordinator(seeded_store, remote, loader=loader, patches=patches, serialize=False)
    yield coordinator
    await loader.aclose()


# ==========================================================================
# HTTP Fixtures
# ==========================================================================

@pytest.fixture
def server_app():
    """Fresh in-memory API server per test."""
    return create_app()


@pytest_asyncio.fixture
async def http_client(server_app) -> AsyncGenerator[AsyncClient, None]:
    """Raw HTTP client bound to the in-memory server."""
    transport = ASGITransport(app=server_app)
    async with AsyncClient(transport=transport, base_url="http://test/api/v1") as client:
        yield client


@pytest_asyncio.fixture
async def api_client(http_client: AsyncClient) -> OpportunityApiClient:
    """OpportunityApiClient talking to the in-memory server."""
    return OpportunityApiClient(client=http_client)
