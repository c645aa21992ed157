"""
Scripted in-process remote API for engine tests.

Behaves like the real server (validates input, assigns ``srv-<n>`` ids)
and lets a test queue failures or hold individual calls on an
asyncio.Event until it decides to release them.
"""

import asyncio
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from opportunity_board.api.base import RemoteOpportunityApi
from opportunity_board.core.derivations import is_complete
from opportunity_board.core.errors import InputValidationError, OpportunityNotFoundError
from opportunity_board.core.filters import filter_opportunities
from opportunity_board.core.models import (
    Grade,
    Opportunity,
    OpportunityStatus,
    Partition,
    Role,
    RoleStatus,
    needs_hire_for,
)
from opportunity_board.core.schemas import (
    OpportunityCreate,
    OpportunityFilters,
    OpportunityUpdate,
    RoleCreate,
    RoleUpdate,
)


# ==========================================================================
# Factories
# ==========================================================================

def make_role(role_id: str = "r1", status: RoleStatus = RoleStatus.OPEN, **overrides: Any) -> Role:
    fields = dict(
        id=role_id,
        role_name=f"Role {role_id}",
        required_grade=Grade.SE,
        status=status,
        needs_hire=needs_hire_for(status),
    )
    fields.update(overrides)
    return Role(**fields)


def make_opportunity(
    opportunity_id: str = "O1",
    status: OpportunityStatus = OpportunityStatus.IN_PROGRESS,
    roles: tuple[Role, ...] = (),
    **overrides: Any,
) -> Opportunity:
    fields = dict(
        id=opportunity_id,
        client_name=f"Client {opportunity_id}",
        opportunity_name=f"Opportunity {opportunity_id}",
        open_date="2024-01-15",
        expected_start_date="2024-03-01",
        probability=50,
        status=status,
        roles=tuple(roles),
    )
    fields.update(overrides)
    return Opportunity(**fields)


# ==========================================================================
# Fake remote
# ==========================================================================

class FakeRemote(RemoteOpportunityApi):
    """Dict-backed remote with call log, queued failures and per-call gates."""

    def __init__(self, opportunities: tuple[Opportunity, ...] = ()):
        self.opportunities: dict[str, Opportunity] = {o.id: o for o in opportunities}
        self.calls: list[tuple[str, tuple]] = []
        self.counter = 0
        self._failures: dict[str, list[tuple[Optional[str], Exception]]] = {}
        self._gates: dict[str, list[asyncio.Event]] = {}

    # ==================== Scripting ====================

    def seed(self, *opportunities: Opportunity) -> None:
        for opportunity in opportunities:
            self.opportunities[opportunity.id] = opportunity

    def fail(self, operation: str, error: Exception, opportunity_id: Optional[str] = None) -> None:
        """Make the next call to ``operation`` (for ``opportunity_id``, if given) raise ``error``."""
        self._failures.setdefault(operation, []).append((opportunity_id, error))

    def hold(self, operation: str) -> asyncio.Event:
        """Block the next call to ``operation`` until the returned event is set."""
        gate = asyncio.Event()
        self._gates.setdefault(operation, []).append(gate)
        return gate

    def calls_to(self, operation: str) -> list[tuple]:
        return [args for name, args in self.calls if name == operation]

    def next_id(self) -> str:
        self.counter += 1
        return f"srv-{self.counter}"

    async def _enter(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        gates = self._gates.get(operation)
        if gates:
            await gates.pop(0).wait()
        failures = self._failures.get(operation, [])
        for index, (opportunity_id, error) in enumerate(failures):
            if opportunity_id is None or (args and args[0] == opportunity_id):
                del failures[index]
                raise error

    def _get(self, opportunity_id: str) -> Opportunity:
        try:
            return self.opportunities[opportunity_id]
        except KeyError:
            raise OpportunityNotFoundError(f"Opportunity {opportunity_id} not found", opportunity_id)

    @staticmethod
    def _validate(schema, fields: Mapping[str, Any], endpoint: str):
        try:
            return schema.model_validate(dict(fields))
        except ValidationError as e:
            raise InputValidationError.from_pydantic(e, endpoint=endpoint, data=dict(fields))

    def _save(self, opportunity: Opportunity) -> Opportunity:
        self.opportunities[opportunity.id] = opportunity
        return opportunity

    def _replace_role(self, opportunity: Opportunity, role_id: str, **update: Any) -> Opportunity:
        if not any(r.id == role_id for r in opportunity.roles):
            raise OpportunityNotFoundError(f"Role {role_id} not found", opportunity.id)
        roles = tuple(r.model_copy(update=update) if r.id == role_id else r for r in opportunity.roles)
        return self._save(opportunity.model_copy(update={"roles": roles}))

    # ==================== RemoteOpportunityApi ====================

    async def list_opportunities(
        self,
        partition: Partition,
        filters: Optional[OpportunityFilters] = None,
    ) -> tuple[Opportunity, ...]:
        await self._enter("list_opportunities", partition, filters)
        matching = [o for o in self.opportunities.values() if o.status == Partition(partition).status]
        return filter_opportunities(matching, filters)

    async def create_opportunity(self, fields: Mapping[str, Any]) -> Opportunity:
        await self._enter("create_opportunity", dict(fields))
        body = self._validate(OpportunityCreate, fields, "POST /opportunities")
        return self._save(Opportunity(
            id=self.next_id(),
            open_date="2024-01-15",
            status=OpportunityStatus.IN_PROGRESS,
            **body.model_dump(),
        ))

    async def add_role(self, opportunity_id: str, fields: Mapping[str, Any]) -> Opportunity:
        await self._enter("add_role", opportunity_id, dict(fields))
        body = self._validate(RoleCreate, fields, "POST /opportunities/{id}/roles")
        opportunity = self._get(opportunity_id)
        role = Role(id=self.next_id(), status=RoleStatus.OPEN, **body.model_dump())
        return self._save(opportunity.model_copy(update={"roles": opportunity.roles + (role,)}))

    async def update_role(self, opportunity_id: str, role_id: str, fields: Mapping[str, Any]) -> Opportunity:
        await self._enter("update_role", opportunity_id, role_id, dict(fields))
        body = self._validate(RoleUpdate, fields, "PATCH /opportunities/{id}/roles/{role_id}")
        return self._replace_role(self._get(opportunity_id), role_id, **body.model_dump(exclude_unset=True))

    async def update_role_status(self, opportunity_id: str, role_id: str, status: RoleStatus) -> Opportunity:
        await self._enter("update_role_status", opportunity_id, role_id, status)
        return self._replace_role(
            self._get(opportunity_id), role_id, status=status, needs_hire=needs_hire_for(status)
        )

    async def move_opportunity(self, opportunity_id: str, status: OpportunityStatus) -> Opportunity:
        await self._enter("move_opportunity", opportunity_id, status)
        return self._save(self._get(opportunity_id).model_copy(update={"status": OpportunityStatus(status)}))

    async def update_opportunity(self, opportunity_id: str, fields: Mapping[str, Any]) -> Opportunity:
        await self._enter("update_opportunity", opportunity_id, dict(fields))
        body = self._validate(OpportunityUpdate, fields, "PATCH /opportunities/{id}")
        return self._save(self._get(opportunity_id).model_copy(update=body.model_dump(exclude_unset=True)))


class CompletingRemote(FakeRemote):
    """Remote that completes an opportunity once every role is Won, Lost or Staffed."""

    async def update_role_status(self, opportunity_id: str, role_id: str, status: RoleStatus) -> Opportunity:
        updated = await super().update_role_status(opportunity_id, role_id, status)
        if is_complete(updated):
            updated = self._save(updated.model_copy(update={"status": OpportunityStatus.DONE}))
        return updated
