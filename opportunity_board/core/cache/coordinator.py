"""
Mutation Coordinator - Optimistic mutation state machine.

Each invocation walks the same steps in order:

1. Cancel      - in-flight reads of the touched partitions
2. Snapshot    - deep copy of exactly the touched partitions
3. Optimistic  - patch applied to the store, visible immediately
4. Remote      - the original intent is sent (only suspension point)
5. Reconcile   - on success, optimistic entity swapped for the server's
6. Rollback    - on failure, snapshot restored
7. Settled     - always, exactly once: touched partitions invalidated

Failures never escape ``execute``; they come back inside a MutationResult.
"""

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Mapping, Optional, TypeVar

import structlog

from opportunity_board.core.cache.intents import (
    AddRole,
    CreateOpportunity,
    MoveOpportunity,
    MutationIntent,
    UpdateOpportunity,
    UpdateRole,
    UpdateRoleStatus,
)
from opportunity_board.core.cache.partition_store import PartitionStore
from opportunity_board.core.cache.patches import OptimisticPatchGenerator
from opportunity_board.core.cache.snapshots import Snapshot, SnapshotManager
from opportunity_board.core.config import settings
from opportunity_board.core.errors import MutationError, RemoteError
from opportunity_board.core.models import (
    OptimisticEntity,
    Opportunity,
    Partition,
    Pending,
    RoleStatus,
)

if TYPE_CHECKING:
    from opportunity_board.api.base import RemoteOpportunityApi
    from opportunity_board.core.cache.loader import PartitionLoader

logger = structlog.get_logger()

T = TypeVar("T")

_PARTITION_ORDER = {key: index for index, key in enumerate(Partition)}


# ==========================================================================
# Result and context
# ==========================================================================

@dataclass(frozen=True)
class MutationResult(Generic[T]):
    """Outcome of one mutation: the server's value or the error that rolled it back."""
    value: Optional[T] = None
    error: Optional[MutationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising the captured error on failure."""
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def success(cls, value: T) -> "MutationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: MutationError) -> "MutationResult[T]":
        return cls(error=error)


@dataclass
class MutationContext:
    """Per-invocation bookkeeping; never shared between mutations."""
    kind: str
    intent: MutationIntent
    keys: tuple[Partition, ...] = ()
    snapshot: Optional[Snapshot] = None
    optimistic: Optional[OptimisticEntity] = None
    temp_id: Optional[str] = None
    settled: bool = False


# ==========================================================================
# Coordinator
# ==========================================================================

class MutationCoordinator:
    """
    Runs mutations against a partition store with snapshot/rollback semantics.

    By default mutations on the same partition are not serialized: the last
    one to reconcile wins. With ``serialize=True`` each mutation holds a lock
    per touched partition from Cancel through Settled, acquired in a fixed
    order so two-partition moves cannot deadlock.
    """

    def __init__(
        self,
        store: PartitionStore,
        remote: "RemoteOpportunityApi",
        loader: Optional["PartitionLoader"] = None,
        snapshots: Optional[SnapshotManager] = None,
        patches: Optional[OptimisticPatchGenerator] = None,
        serialize: Optional[bool] = None,
    ):
        self.store = store
        self.remote = remote
        self.loader = loader
        self.snapshots = snapshots or SnapshotManager()
        self.patches = patches or OptimisticPatchGenerator()
        self.serialize = settings.SERIALIZE_PARTITION_MUTATIONS if serialize is None else serialize
        self._locks: dict[Partition, asyncio.Lock] = {}
        self._in_flight: dict[Partition, int] = {}
        # Temp ids whose mutation already finished; any copy left in a snapshot is a ghost
        self._retired_temp_ids: set[str] = set()

    # ==================== Status ====================

    def is_pending(self, key: Optional[Partition] = None) -> bool:
        """True while a mutation touching ``key`` (or any partition) is unsettled."""
        if key is None:
            return any(self._in_flight.values())
        return self._in_flight.get(key, 0) > 0

    # ==================== Execution ====================

    async def execute(self, intent: MutationIntent) -> MutationResult[Opportunity]:
        try:
            keys = self._resolve(intent)
        except MutationError as e:
            logger.warning("mutation_rejected", kind=intent.kind, error=e.message)
            return MutationResult.failure(e)

        if not self.serialize:
            return await self._run(intent, keys)
        return await self._run_serialized(intent, keys)

    def _resolve(self, intent: MutationIntent) -> tuple[Partition, ...]:
        return self.patches.target_keys(self.store.partitions(), intent)

    async def _run_serialized(
        self, intent: MutationIntent, keys: tuple[Partition, ...]
    ) -> MutationResult[Opportunity]:
        while True:
            async with AsyncExitStack() as stack:
                for key in sorted(keys, key=_PARTITION_ORDER.__getitem__):
                    await stack.enter_async_context(self._locks.setdefault(key, asyncio.Lock()))

                # The opportunity may have moved while we waited
                try:
                    current = self._resolve(intent)
                except MutationError as e:
                    logger.warning("mutation_rejected", kind=intent.kind, error=e.message)
                    return MutationResult.failure(e)
                if set(current) <= set(keys):
                    return await self._run(intent, current)
            keys = current

    async def _run(
        self, intent: MutationIntent, keys: tuple[Partition, ...]
    ) -> MutationResult[Opportunity]:
        context = MutationContext(kind=intent.kind, intent=intent, keys=keys)
        self._track(keys, 1)
        try:
            # 1. Cancel
            if self.loader is not None:
                self.loader.cancel(keys)

            # 2. Snapshot
            context.snapshot = self.snapshots.capture(self.store, keys)

            # 3. Optimistic apply
            patch = self.patches.generate(self.store.partitions(), intent)
            patch.apply(self.store)
            context.optimistic = patch.optimistic
            if isinstance(patch.optimistic, Pending):
                context.temp_id = patch.optimistic.temp_id
            logger.debug(
                "optimistic_patch_applied",
                kind=context.kind,
                partitions=[k.value for k in keys],
            )

            # 4. Remote invoke
            server = await intent.send(self.remote)
            # The server may have moved the opportunity to another partition
            context.keys = tuple(dict.fromkeys(context.keys + (Partition.for_status(server.status),)))

            # 5. Reconcile
            self._reconcile(context, server)
            logger.info("mutation_succeeded", kind=context.kind, opportunity_id=server.id)
            return MutationResult.success(server)

        except MutationError as e:
            self._rollback(context, e)
            return MutationResult.failure(e)

        except asyncio.CancelledError:
            self._rollback(context, None)
            raise

        except Exception as e:
            error = RemoteError(str(e) or type(e).__name__)
            error.__cause__ = e
            self._rollback(context, error)
            return MutationResult.failure(error)

        finally:
            # 7. Settled
            self._retire(context)
            self._track(keys, -1)
            if not self.is_pending():
                self._retired_temp_ids.clear()
            self._settle(context)

    # ==================== Steps ====================

    def _reconcile(self, context: MutationContext, server: Opportunity) -> None:
        try:
            patch = self.patches.reconcile(
                self.store.partitions(), context.intent, context.optimistic, server
            )
            if patch is None:
                logger.debug("mutation_reconcile_skipped", kind=context.kind)
                return
            patch.apply(self.store)
            context.optimistic = patch.optimistic
        except Exception as e:
            # The settled refetch supersedes whatever is in the store now
            logger.error("mutation_reconcile_failed", kind=context.kind, error=str(e))

    def _rollback(self, context: MutationContext, error: Optional[MutationError]) -> None:
        if context.snapshot is None:
            return
        self._retire(context)
        try:
            snapshot = self.snapshots.rebase(
                context.snapshot, self.store.partitions(), self._retired_temp_ids
            )
            self.snapshots.restore(self.store, snapshot)
            logger.warning(
                "mutation_rolled_back",
                kind=context.kind,
                partitions=[k.value for k in context.keys],
                error=error.message if error else "cancelled",
            )
        except Exception as e:
            logger.error("mutation_rollback_failed", kind=context.kind, error=str(e))

    def _settle(self, context: MutationContext) -> None:
        if context.settled:
            return
        context.settled = True
        try:
            self.store.invalidate(context.keys)
        except Exception as e:
            logger.error("mutation_settle_failed", kind=context.kind, error=str(e))
        logger.debug("mutation_settled", kind=context.kind, partitions=[k.value for k in context.keys])

    def _retire(self, context: MutationContext) -> None:
        if context.temp_id is not None:
            self._retired_temp_ids.add(context.temp_id)

    def _track(self, keys: tuple[Partition, ...], delta: int) -> None:
        for key in keys:
            self._in_flight[key] = self._in_flight.get(key, 0) + delta

    # ==================== Commands ====================

    async def create_opportunity(self, fields: Mapping[str, Any]) -> MutationResult[Opportunity]:
        return await self.execute(CreateOpportunity(fields=dict(fields)))

    async def add_role(self, opportunity_id: str, fields: Mapping[str, Any]) -> MutationResult[Opportunity]:
        return await self.execute(AddRole(opportunity_id=opportunity_id, fields=dict(fields)))

    async def move_opportunity(
        self,
        opportunity_id: str,
        destination: Partition,
        source: Optional[Partition] = None,
    ) -> MutationResult[Opportunity]:
        return await self.execute(
            MoveOpportunity(
                opportunity_id=opportunity_id,
                destination=Partition(destination),
                source=Partition(source) if source is not None else None,
            )
        )

    async def update_role_status(
        self, opportunity_id: str, role_id: str, status: RoleStatus
    ) -> MutationResult[Opportunity]:
        return await self.execute(
            UpdateRoleStatus(opportunity_id=opportunity_id, role_id=role_id, status=RoleStatus(status))
        )

    async def update_role(
        self, opportunity_id: str, role_id: str, fields: Mapping[str, Any]
    ) -> MutationResult[Opportunity]:
        return await self.execute(
            UpdateRole(opportunity_id=opportunity_id, role_id=role_id, fields=dict(fields))
        )

    async def update_opportunity(
        self, opportunity_id: str, fields: Mapping[str, Any]
    ) -> MutationResult[Opportunity]:
        return await self.execute(UpdateOpportunity(opportunity_id=opportunity_id, fields=dict(fields)))
