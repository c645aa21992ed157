"""
Opportunity Board - Dashboard Facade
====================================

Command surface the UI talks to. Owns one partition store and wires the
loader, the mutation coordinator, the filter set and the debounced
client filter around it.

Usage:
    async with OpportunityBoard(OpportunityApiClient()) as board:
        await board.add_role(opportunity_id, {"roleName": "Tech Lead", "requiredGrade": "SC"})
        rows = board.rows(Partition.IN_PROGRESS)
"""

import asyncio
from typing import Any, Mapping, Optional

import structlog

from opportunity_board.api.base import RemoteOpportunityApi
from opportunity_board.core.cache.coordinator import MutationCoordinator, MutationResult
from opportunity_board.core.cache.loader import PartitionLoader
from opportunity_board.core.cache.partition_store import PartitionStore, StoreEvent
from opportunity_board.core.config import settings
from opportunity_board.core.derivations import (
    MonthGroup,
    TableRow,
    flatten_opportunities,
    group_by_month,
    is_complete,
)
from opportunity_board.core.errors import ErrorNotice, InputValidationError
from opportunity_board.core.filter_input import DebouncedFilterInput
from opportunity_board.core.filters import filter_opportunities
from opportunity_board.core.models import Opportunity, Partition, RoleStatus
from opportunity_board.core.schemas import OpportunityFilters

logger = structlog.get_logger()


class OpportunityBoard:
    """
    Staffing dashboard state: partitions, filters and optimistic commands.

    Every command returns a MutationResult; failures are also recorded as
    ``last_error_notice`` for display.
    """

    def __init__(
        self,
        remote: RemoteOpportunityApi,
        store: Optional[PartitionStore] = None,
        filters: Optional[OpportunityFilters] = None,
        serialize: Optional[bool] = None,
        refetch_on_invalidate: Optional[bool] = None,
        auto_complete: Optional[bool] = None,
    ):
        self.remote = remote
        self.store = store or PartitionStore()
        self.loader = PartitionLoader(self.store, remote)
        self.coordinator = MutationCoordinator(self.store, remote, loader=self.loader, serialize=serialize)
        self.filters = filters or OpportunityFilters()
        self.client_filter = DebouncedFilterInput(
            initial=self.filters.client,
            on_commit=self._commit_client_filter,
        )
        self.refetch_on_invalidate = (
            settings.REFETCH_ON_INVALIDATE if refetch_on_invalidate is None else refetch_on_invalidate
        )
        self.auto_complete = settings.AUTO_COMPLETE_OPPORTUNITIES if auto_complete is None else auto_complete
        self.last_error_notice: Optional[ErrorNotice] = None
        self._unsubscribe = None

    # ==================== Lifecycle ====================

    async def start(self, wait: bool = True) -> None:
        """Subscribe to store events and load every partition."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_store_event)
        self.loader.load_all()
        if wait:
            await self.loader.wait()
        logger.info("opportunity_board_started", partitions=len(Partition))

    async def aclose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.client_filter.aclose()
        await self.loader.aclose()
        self.store.close()
        logger.info("opportunity_board_closed")

    async def __aenter__(self) -> "OpportunityBoard":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def refresh(self) -> None:
        """Reload stale partitions and wait for them."""
        self.loader.refetch_stale()
        await self.loader.wait()

    def _on_store_event(self, event: StoreEvent) -> None:
        if event.kind != "invalidate" or not self.refetch_on_invalidate:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        for key in event.keys:
            # The last mutation on a partition to settle triggers its refetch
            if not self.coordinator.is_pending(key):
                self.loader.load(key)

    # ==================== Reads ====================

    @property
    def in_progress(self) -> tuple[Opportunity, ...]:
        return self.store.get(Partition.IN_PROGRESS)

    @property
    def on_hold(self) -> tuple[Opportunity, ...]:
        return self.store.get(Partition.ON_HOLD)

    @property
    def completed(self) -> tuple[Opportunity, ...]:
        return self.store.get(Partition.COMPLETED)

    def visible(self, partition: Partition) -> tuple[Opportunity, ...]:
        """Opportunities of a partition that pass the current filters."""
        return filter_opportunities(self.store.get(Partition(partition)), self.filters)

    def rows(self, partition: Partition) -> list[TableRow]:
        return flatten_opportunities(self.visible(partition))

    def month_groups(self, partition: Partition) -> list[MonthGroup]:
        return group_by_month(self.visible(partition))

    # ==================== Filters ====================

    def set_filters(self, filters: Optional[OpportunityFilters] = None, **changes: Any) -> OpportunityFilters:
        """Replace the filter set, or update some of its fields."""
        if filters is None:
            filters = OpportunityFilters(**{**self.filters.model_dump(), **changes})
        self.filters = filters
        logger.debug("filters_changed", active=filters.has_active_filters)
        return filters

    def clear_filters(self) -> None:
        self.set_filters(OpportunityFilters())
        self.client_filter.raw = ""
        self.client_filter.flush()

    def _commit_client_filter(self, value: str) -> None:
        self.set_filters(client=value)

    # ==================== Status signals ====================

    @property
    def validation_error(self) -> Optional[InputValidationError]:
        return self.loader.validation_error()

    @property
    def has_validation_error(self) -> bool:
        return self.validation_error is not None

    @property
    def is_refetching(self) -> bool:
        return self.loader.is_refetching()

    def is_pending(self, partition: Optional[Partition] = None) -> bool:
        return self.coordinator.is_pending(Partition(partition) if partition is not None else None)

    def dismiss_error(self) -> None:
        self.last_error_notice = None

    # ==================== Commands ====================

    async def create_opportunity(self, fields: Mapping[str, Any]) -> MutationResult[Opportunity]:
        return self._record(await self.coordinator.create_opportunity(fields))

    async def add_role(self, opportunity_id: str, fields: Mapping[str, Any]) -> MutationResult[Opportunity]:
        return self._record(await self.coordinator.add_role(opportunity_id, fields))

    async def move_opportunity(
        self,
        opportunity_id: str,
        destination: Partition,
        source: Optional[Partition] = None,
    ) -> MutationResult[Opportunity]:
        return self._record(await self.coordinator.move_opportunity(opportunity_id, destination, source))

    async def move_to_on_hold(self, opportunity_id: str) -> MutationResult[Opportunity]:
        return await self.move_opportunity(opportunity_id, Partition.ON_HOLD)

    async def move_to_in_progress(self, opportunity_id: str) -> MutationResult[Opportunity]:
        return await self.move_opportunity(opportunity_id, Partition.IN_PROGRESS)

    async def move_to_completed(self, opportunity_id: str) -> MutationResult[Opportunity]:
        return await self.move_opportunity(opportunity_id, Partition.COMPLETED)

    async def update_role_status(
        self,
        opportunity_id: str,
        role_id: str,
        status: RoleStatus,
    ) -> MutationResult[Opportunity]:
        """
        Change a role's status.

        With auto-completion enabled, an opportunity whose roles are now all
        Won, Lost or Staffed is then moved to the completed partition.
        """
        result = self._record(await self.coordinator.update_role_status(opportunity_id, role_id, status))
        if result.ok and self.auto_complete:
            await self._complete_if_done(opportunity_id)
        return result

    async def update_role(
        self,
        opportunity_id: str,
        role_id: str,
        fields: Mapping[str, Any],
    ) -> MutationResult[Opportunity]:
        return self._record(await self.coordinator.update_role(opportunity_id, role_id, fields))

    async def update_opportunity(self, opportunity_id: str, fields: Mapping[str, Any]) -> MutationResult[Opportunity]:
        return self._record(await self.coordinator.update_opportunity(opportunity_id, fields))

    async def _complete_if_done(self, opportunity_id: str) -> None:
        found = self.store.find(opportunity_id, Partition.open_partitions())
        if found is None or not is_complete(found[1]):
            return
        logger.info("opportunity_auto_completed", opportunity_id=opportunity_id)
        await self.move_to_completed(opportunity_id)

    def _record(self, result: MutationResult[Opportunity]) -> MutationResult[Opportunity]:
        if result.error is not None:
            self.last_error_notice = result.error.to_notice()
        return result
