"""
Partition Loader - Cancellable partition reads.

Reads run as asyncio tasks, one per partition. A read records the
partition generation when it starts; if anything wrote to the partition
before the response arrived, the response is discarded instead of
overwriting newer local state.
"""

import asyncio
from typing import TYPE_CHECKING, Iterable, Optional

import structlog

from opportunity_board.core.cache.partition_store import PartitionStore
from opportunity_board.core.errors import InputValidationError, MutationError, RemoteError
from opportunity_board.core.models import Partition
from opportunity_board.core.schemas import OpportunityFilters

if TYPE_CHECKING:
    from opportunity_board.api.base import RemoteOpportunityApi

logger = structlog.get_logger()


class PartitionLoader:
    """Fetches partitions from the remote API into a partition store."""

    def __init__(self, store: PartitionStore, remote: "RemoteOpportunityApi"):
        self.store = store
        self.remote = remote
        self._tasks: dict[Partition, asyncio.Task] = {}
        self._errors: dict[Partition, MutationError] = {}

    # ==================== Reads ====================

    def load(self, key: Partition, filters: Optional[OpportunityFilters] = None) -> asyncio.Task:
        """
        Start a read for one partition, superseding any read already running for it.

        Returns the task; its result is True when the response was applied.
        """
        key = Partition(key)
        self._cancel_one(key)
        task = asyncio.create_task(self._read(key, filters), name=f"load:{key.value}")
        self._tasks[key] = task
        task.add_done_callback(lambda t, key=key: self._forget(key, t))
        return task

    def load_all(self, filters: Optional[OpportunityFilters] = None) -> list[asyncio.Task]:
        return [self.load(key, filters) for key in Partition]

    def refetch_stale(self, filters: Optional[OpportunityFilters] = None) -> list[asyncio.Task]:
        """Reload every stale partition that is not already being fetched."""
        return [
            self.load(key, filters)
            for key in self.store.stale_keys()
            if not self.is_fetching(key)
        ]

    async def _read(self, key: Partition, filters: Optional[OpportunityFilters]) -> bool:
        generation = self.store.generation(key)
        try:
            opportunities = await self.remote.list_opportunities(key, filters)
        except asyncio.CancelledError:
            logger.debug("partition_read_cancelled", partition=key.value)
            raise
        except MutationError as e:
            self._errors[key] = e
            logger.warning("partition_read_failed", partition=key.value, error=e.message)
            return False
        except Exception as e:
            error = RemoteError(str(e) or type(e).__name__)
            error.__cause__ = e
            self._errors[key] = error
            logger.warning("partition_read_failed", partition=key.value, error=error.message)
            return False

        if self.store.closed:
            return False
        current = self.store.generation(key)
        if current != generation:
            logger.info(
                "partition_read_discarded",
                partition=key.value,
                started_at=generation,
                current=current,
            )
            return False

        self._errors.pop(key, None)
        self.store.replace_from_read(key, opportunities)
        logger.debug("partition_loaded", partition=key.value, count=len(opportunities))
        return True

    # ==================== Cancellation ====================

    def cancel(self, keys: Iterable[Partition]) -> None:
        """Cancel in-flight reads of the given partitions."""
        for key in keys:
            self._cancel_one(Partition(key))

    def _cancel_one(self, key: Partition) -> None:
        task = self._tasks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    def _forget(self, key: Partition, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    async def wait(self) -> None:
        """Wait for every read currently in flight."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        self.cancel(list(self._tasks))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ==================== Status ====================

    def is_fetching(self, key: Optional[Partition] = None) -> bool:
        if key is None:
            return bool(self._tasks)
        return Partition(key) in self._tasks

    def is_refetching(self, key: Optional[Partition] = None) -> bool:
        """Fetching a partition that already holds data from an earlier read."""
        keys = Partition if key is None else (Partition(key),)
        return any(k in self._tasks and self.store.generation(k) > 0 for k in keys)

    def error(self, key: Partition) -> Optional[MutationError]:
        return self._errors.get(Partition(key))

    @property
    def errors(self) -> dict[Partition, MutationError]:
        return dict(self._errors)

    def validation_error(self) -> Optional[InputValidationError]:
        """First schema failure among the last reads, if any."""
        for key in Partition:
            error = self._errors.get(key)
            if isinstance(error, InputValidationError):
                return error
        return None
