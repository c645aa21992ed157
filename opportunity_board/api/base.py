"""
Remote Opportunity API - Abstract interface
===========================================

The engine only ever talks to this interface. Every mutating operation
returns the server's full view of the affected opportunity, which is what
reconciliation swaps into the cache.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from opportunity_board.core.models import Opportunity, OpportunityStatus, Partition, RoleStatus
from opportunity_board.core.schemas import OpportunityFilters


class RemoteOpportunityApi(ABC):
    """
    Async remote API for opportunities and their roles.

    Implementations raise InputValidationError for schema failures,
    OpportunityNotFoundError for unknown ids and RemoteError for any other
    failure.
    """

    @abstractmethod
    async def list_opportunities(
        self,
        partition: Partition,
        filters: Optional[OpportunityFilters] = None,
    ) -> tuple[Opportunity, ...]:
        """
        Fetch the opportunities of one partition.

        Args:
            partition: Lifecycle partition to read
            filters: Optional server-side filters

        Returns:
            Opportunities in display order
        """
        pass

    @abstractmethod
    async def create_opportunity(self, fields: Mapping[str, Any]) -> Opportunity:
        """Create an opportunity; the server assigns its id."""
        pass

    @abstractmethod
    async def add_role(self, opportunity_id: str, fields: Mapping[str, Any]) -> Opportunity:
        """Append a role; returns the opportunity including the new role."""
        pass

    @abstractmethod
    async def update_role(
        self,
        opportunity_id: str,
        role_id: str,
        fields: Mapping[str, Any],
    ) -> Opportunity:
        pass

    @abstractmethod
    async def update_role_status(
        self,
        opportunity_id: str,
        role_id: str,
        status: RoleStatus,
    ) -> Opportunity:
        pass

    @abstractmethod
    async def move_opportunity(self, opportunity_id: str, status: OpportunityStatus) -> Opportunity:
        """Change an opportunity's lifecycle status."""
        pass

    @abstractmethod
    async def update_opportunity(self, opportunity_id: str, fields: Mapping[str, Any]) -> Opportunity:
        pass

    async def aclose(self) -> None:
        """Release transport resources, if any."""
        return None
