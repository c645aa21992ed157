"""
Opportunity Board - Partition Cache
===================================

Partition store, snapshots, optimistic patches, the mutation coordinator
and the partition loader.
"""

from .partition_store import PartitionStore, StoreEvent
from .snapshots import Snapshot, SnapshotManager
from .intents import (
    MutationIntent,
    CreateOpportunity,
    AddRole,
    MoveOpportunity,
    UpdateRoleStatus,
    UpdateRole,
    UpdateOpportunity,
)
from .patches import OptimisticPatchGenerator, Patch
from .coordinator import MutationCoordinator, MutationContext, MutationResult
from .loader import PartitionLoader

__all__ = [
    "PartitionStore",
    "StoreEvent",
    "Snapshot",
    "SnapshotManager",
    "MutationIntent",
    "CreateOpportunity",
    "AddRole",
    "MoveOpportunity",
    "UpdateRoleStatus",
    "UpdateRole",
    "UpdateOpportunity",
    "OptimisticPatchGenerator",
    "Patch",
    "MutationCoordinator",
    "MutationContext",
    "MutationResult",
    "PartitionLoader",
]
