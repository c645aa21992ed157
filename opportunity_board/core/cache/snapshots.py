"""
Snapshot Manager - Point-in-time capture and restore of partitions.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

import structlog

from opportunity_board.core.cache.partition_store import PartitionStore
from opportunity_board.core.models import Opportunity, Partition

logger = structlog.get_logger()


@dataclass(frozen=True)
class Snapshot:
    """Immutable deep copy of some partitions, tagged with the keys it covers."""
    partitions: Mapping[Partition, tuple[Opportunity, ...]]

    @property
    def keys(self) -> tuple[Partition, ...]:
        return tuple(self.partitions)

    def __getitem__(self, key: Partition) -> tuple[Opportunity, ...]:
        return self.partitions[key]


class SnapshotManager:
    """
    Captures partitions before a mutation and restores them on failure.

    Restore is an unconditional overwrite of exactly the captured keys:
    partitions outside the snapshot are never touched.
    """

    @staticmethod
    def capture(store: PartitionStore, keys: Iterable[Partition]) -> Snapshot:
        copied: dict[Partition, tuple[Opportunity, ...]] = {}
        for key in dict.fromkeys(Partition(k) for k in keys):
            copied[key] = tuple(o.model_copy(deep=True) for o in store.get(key))
        return Snapshot(partitions=MappingProxyType(copied))

    @staticmethod
    def restore(store: PartitionStore, snapshot: Snapshot) -> None:
        store.set_many(dict(snapshot.partitions))
        logger.debug("snapshot_restored", partitions=[k.value for k in snapshot.keys])

    @staticmethod
    def rebase(
        snapshot: Snapshot,
        current: Mapping[Partition, Iterable[Opportunity]],
        discard_ids: Iterable[str] = (),
    ) -> Snapshot:
        """
        Adjust a snapshot for mutations that landed after it was taken.

        Opportunities that now live in a partition outside the snapshot are
        left out, and opportunities that arrived in a captured partition
        since the capture are kept, so restoring never shows an id in two
        partitions or in none. ``discard_ids`` (temporary ids of finished
        mutations) are dropped everywhere, as opportunities and as roles.
        Without concurrent changes the result equals the original snapshot.
        """
        discard = set(discard_ids)
        keys = set(snapshot.keys)
        outside = {o.id for key, opportunities in current.items() if key not in keys for o in opportunities}
        captured = {o.id for key in snapshot.keys for o in snapshot[key]}
        skip = outside | captured | discard

        rebased: dict[Partition, tuple[Opportunity, ...]] = {}
        for key in snapshot.keys:
            kept = tuple(o for o in snapshot[key] if o.id not in outside and o.id not in discard)
            arrived = tuple(o for o in current.get(key, ()) if o.id not in skip)
            rebased[key] = tuple(_without_roles(o, discard) for o in kept + arrived)
        return Snapshot(partitions=MappingProxyType(rebased))


def _without_roles(opportunity: Opportunity, role_ids: set[str]) -> Opportunity:
    if not any(r.id in role_ids for r in opportunity.roles):
        return opportunity
    return opportunity.model_copy(
        update={"roles": tuple(r for r in opportunity.roles if r.id not in role_ids)}
    )
