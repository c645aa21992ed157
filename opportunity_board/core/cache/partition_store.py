"""
Partition Store - In-memory opportunity cache.

Single source of truth for what the dashboard currently believes,
addressable by partition key. Every write bumps the partition's
generation and notifies observers synchronously.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional

import structlog

from opportunity_board.core.config import settings
from opportunity_board.core.errors import StoreClosedError
from opportunity_board.core.models import Opportunity, Partition

logger = structlog.get_logger()


OpportunityTransform = Callable[[Opportunity], Opportunity]


@dataclass(frozen=True)
class StoreEvent:
    """Change notification delivered to store observers."""
    kind: str  # set, update, invalidate
    keys: tuple[Partition, ...]
    generations: dict[Partition, int] = field(default_factory=dict)


StoreObserver = Callable[[StoreEvent], None]


def default_stale_after() -> dict[Partition, float]:
    return {
        Partition.IN_PROGRESS: settings.STALE_AFTER_SECONDS,
        Partition.ON_HOLD: settings.STALE_AFTER_SECONDS,
        Partition.COMPLETED: settings.COMPLETED_STALE_AFTER_SECONDS,
    }


class PartitionStore:
    """
    Addressable cache of opportunity sequences keyed by partition.

    The store is constructed explicitly and handed to the coordinator,
    the loader and the board; it has no module-level instance. It does
    no I/O of its own.

    Staleness:
    - a partition never filled by a read is stale
    - ``invalidate`` marks partitions stale until the next fresh read
    - a fresh read older than its ``stale_after`` limit is stale again
    """

    def __init__(
        self,
        stale_after: Optional[Mapping[Partition, float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._partitions: dict[Partition, tuple[Opportunity, ...]] = {}
        self._generations: dict[Partition, int] = {}
        self._invalidated: set[Partition] = set()
        self._fetched_at: dict[Partition, float] = {}
        self._observers: list[StoreObserver] = []
        self._stale_after = dict(stale_after) if stale_after is not None else default_stale_after()
        self._clock = clock
        self._closed = False

    # ==================== Reads ====================

    def get(self, key: Partition) -> tuple[Opportunity, ...]:
        """Current opportunities of a partition; empty for an unknown key."""
        return self._partitions.get(key, ())

    def find(
        self,
        opportunity_id: str,
        keys: Optional[Iterable[Partition]] = None,
    ) -> Optional[tuple[Partition, Opportunity]]:
        """Locate an opportunity, scanning ``keys`` in order (all partitions by default)."""
        for key in keys if keys is not None else tuple(Partition):
            for opportunity in self.get(key):
                if opportunity.id == opportunity_id:
                    return key, opportunity
        return None

    def generation(self, key: Partition) -> int:
        return self._generations.get(key, 0)

    def partitions(self) -> dict[Partition, tuple[Opportunity, ...]]:
        return dict(self._partitions)

    @property
    def closed(self) -> bool:
        return self._closed

    # ==================== Writes ====================

    def set(self, key: Partition, opportunities: Iterable[Opportunity]) -> None:
        """Replace a partition's contents."""
        self.set_many({key: opportunities})

    def set_many(self, updates: Mapping[Partition, Iterable[Opportunity]]) -> None:
        """
        Replace several partitions as one observable step.

        Observers see either none or all of the new contents, so moving an
        opportunity between partitions never shows it twice or not at all.
        """
        self._ensure_open()
        if not updates:
            return
        keys = tuple(Partition(key) for key in updates)
        for key, opportunities in zip(keys, updates.values()):
            self._partitions[key] = tuple(opportunities)
            self._bump(key)
        self._notify("set", keys)

    def update_entity(
        self,
        key: Partition,
        opportunity_id: str,
        transform: OpportunityTransform,
    ) -> bool:
        """
        Apply a pure transform to one opportunity of a partition.

        Returns False (and changes nothing) if the opportunity is absent.
        """
        self._ensure_open()
        current = self.get(key)
        for index, opportunity in enumerate(current):
            if opportunity.id == opportunity_id:
                updated = transform(opportunity)
                key = Partition(key)
                self._partitions[key] = current[:index] + (updated,) + current[index + 1:]
                self._bump(key)
                self._notify("update", (key,))
                return True
        return False

    def replace_from_read(self, key: Partition, opportunities: Iterable[Opportunity]) -> None:
        """Apply a fresh server read and clear the partition's staleness."""
        self._ensure_open()
        key = Partition(key)
        self._partitions[key] = tuple(opportunities)
        self._invalidated.discard(key)
        self._fetched_at[key] = self._clock()
        self._bump(key)
        self._notify("set", (key,))

    # ==================== Staleness ====================

    def invalidate(self, keys: Iterable[Partition]) -> None:
        """Mark partitions stale so the next read supersedes local state."""
        keys = tuple(Partition(key) for key in keys)
        if self._closed or not keys:
            return
        self._invalidated.update(keys)
        logger.debug("partitions_invalidated", partitions=[k.value for k in keys])
        self._notify("invalidate", keys)

    def is_stale(self, key: Partition) -> bool:
        if key in self._invalidated:
            return True
        fetched_at = self._fetched_at.get(key)
        if fetched_at is None:
            return True
        limit = self._stale_after.get(key)
        return limit is not None and self._clock() - fetched_at > limit

    def stale_keys(self) -> tuple[Partition, ...]:
        return tuple(key for key in Partition if self.is_stale(key))

    # ==================== Observers ====================

    def subscribe(self, observer: StoreObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that unregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def close(self) -> None:
        """Tear the store down; later writes raise StoreClosedError."""
        self._closed = True
        self._observers.clear()
        logger.debug("partition_store_closed")

    # ==================== Internals ====================

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("Partition store is closed")

    def _bump(self, key: Partition) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def _notify(self, kind: str, keys: tuple[Partition, ...]) -> None:
        event = StoreEvent(
            kind=kind,
            keys=keys,
            generations={key: self.generation(key) for key in keys},
        )
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.error("store_observer_failed", kind=kind, error=str(e))
