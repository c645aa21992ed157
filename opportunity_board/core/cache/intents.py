"""
Mutation intents - what the UI asked for, before any optimism.

Each intent knows which remote operation carries it; the coordinator
always sends the original intent, never the optimistic entity.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Optional

from opportunity_board.core.models import Opportunity, Partition, RoleStatus

if TYPE_CHECKING:
    from opportunity_board.api.base import RemoteOpportunityApi


@dataclass(frozen=True)
class MutationIntent:
    """Base for all mutation intents."""

    kind = "mutation"

    async def send(self, remote: "RemoteOpportunityApi") -> Opportunity:
        raise NotImplementedError


@dataclass(frozen=True)
class CreateOpportunity(MutationIntent):
    fields: Mapping[str, Any] = field(default_factory=dict)

    kind = "create_opportunity"

    async def send(self, remote: "RemoteOpportunityApi") -> Opportunity:
        return await remote.create_opportunity(dict(self.fields))


@dataclass(frozen=True)
class AddRole(MutationIntent):
    opportunity_id: str = ""
    fields: Mapping[str, Any] = field(default_factory=dict)

    kind = "add_role"

    async def send(self, remote: "RemoteOpportunityApi") -> Opportunity:
        return await remote.add_role(self.opportunity_id, dict(self.fields))


@dataclass(frozen=True)
class MoveOpportunity(MutationIntent):
    opportunity_id: str = ""
    destination: Partition = Partition.IN_PROGRESS
    source: Optional[Partition] = None  # located in the store when omitted

    kind = "move_opportunity"

    async def send(self, remote: "RemoteOpportunityApi") -> Opportunity:
        return await remote.move_opportunity(self.opportunity_id, self.destination.status)


@dataclass(frozen=True)
class UpdateRoleStatus(MutationIntent):
    opportunity_id: str = ""
    role_id: str = ""
    status: RoleStatus = RoleStatus.OPEN

    kind = "update_role_status"

    async def send(self, remote: "RemoteOpportunityApi") -> Opportunity:
        return await remote.update_role_status(self.opportunity_id, self.role_id, self.status)


@dataclass(frozen=True)
class UpdateRole(MutationIntent):
    opportunity_id: str = ""
    role_id: str = ""
    fields: Mapping[str, Any] = field(default_factory=dict)

    kind = "update_role"

    async def send(self, remote: "RemoteOpportunityApi") -> Opportunity:
        return await remote.update_role(self.opportunity_id, self.role_id, dict(self.fields))


@dataclass(frozen=True)
class UpdateOpportunity(MutationIntent):
    opportunity_id: str = ""
    fields: Mapping[str, Any] = field(default_factory=dict)

    kind = "update_opportunity"

    async def send(self, remote: "RemoteOpportunityApi") -> Opportunity:
        return await remote.update_opportunity(self.opportunity_id, dict(self.fields))
