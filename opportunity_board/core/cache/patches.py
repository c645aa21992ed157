"""
Optimistic Patch Generator - speculative state shown before the server answers.

Pure functions of (current partitions, intent). Nothing here performs
I/O or mutates its inputs; every patch is a description of new state
that the coordinator writes into the store.

Two patch shapes:
- partition patches replace whole partitions (create, move)
- entity patches carry a transform for one opportunity (role and field
  edits); applied through ``update_entity`` against whatever the store
  holds at that moment, so concurrent edits to other roles survive
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping, Optional, Type
from uuid import uuid4

from pydantic import BaseModel

from opportunity_board.core.cache.intents import (
    AddRole,
    CreateOpportunity,
    MoveOpportunity,
    MutationIntent,
    UpdateOpportunity,
    UpdateRole,
    UpdateRoleStatus,
)
from opportunity_board.core.cache.partition_store import OpportunityTransform, PartitionStore
from opportunity_board.core.config import settings
from opportunity_board.core.errors import OpportunityNotFoundError
from opportunity_board.core.models import (
    Confirmed,
    Grade,
    OptimisticEntity,
    Opportunity,
    OpportunityStatus,
    Partition,
    Pending,
    Role,
    RoleStatus,
    needs_hire_for,
)

Partitions = Mapping[Partition, tuple[Opportunity, ...]]

# Fields a partial edit may never overwrite
_PROTECTED_ROLE_FIELDS = frozenset({"id", "status"})
_PROTECTED_OPPORTUNITY_FIELDS = frozenset({"id", "roles", "status"})


@dataclass(frozen=True)
class Patch:
    """New state for the partitions a mutation touches."""
    keys: tuple[Partition, ...]
    optimistic: Optional[OptimisticEntity] = None
    partitions: Mapping[Partition, tuple[Opportunity, ...]] = field(default_factory=dict)
    opportunity_id: Optional[str] = None
    transform: Optional[OpportunityTransform] = None

    def apply(self, store: PartitionStore) -> None:
        """Write the patch into the store as one observable step per shape."""
        if self.partitions:
            store.set_many(self.partitions)
        if self.transform is not None:
            store.update_entity(self.keys[0], self.opportunity_id, self.transform)


# ==========================================================================
# Pure helpers
# ==========================================================================

def normalize_fields(model: Type[BaseModel], fields: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase or snake_case input onto the model's field names, dropping unknown keys."""
    by_alias = {info.alias or name: name for name, info in model.model_fields.items()}
    normalized: dict[str, Any] = {}
    for key, value in fields.items():
        if key in model.model_fields:
            normalized[key] = value
        elif key in by_alias:
            normalized[by_alias[key]] = value
    return normalized


def with_role_status(role: Role, status: RoleStatus) -> Role:
    return role.model_copy(update={"status": status, "needs_hire": needs_hire_for(status)})


def replace_role(opportunity: Opportunity, role_id: str, replacement: Role) -> Opportunity:
    """Swap one role, keeping its position; unchanged if the role is absent."""
    if not any(r.id == role_id for r in opportunity.roles):
        return opportunity
    return opportunity.model_copy(
        update={"roles": tuple(replacement if r.id == role_id else r for r in opportunity.roles)}
    )


def map_role(opportunity: Opportunity, role_id: str, fn: Callable[[Role], Role]) -> Opportunity:
    return opportunity.model_copy(
        update={"roles": tuple(fn(r) if r.id == role_id else r for r in opportunity.roles)}
    )


def place_opportunity(
    current: Partitions,
    opportunity: Opportunity,
    key: Partition,
    match_id: Optional[str] = None,
) -> dict[Partition, tuple[Opportunity, ...]]:
    """
    Put ``opportunity`` into ``key`` and remove it from every other partition.

    An entry whose id is ``match_id`` (or the opportunity's own id) is
    replaced in place; otherwise the opportunity is appended. Only changed
    partitions are returned.
    """
    ids = {opportunity.id} | ({match_id} if match_id else set())
    changes: dict[Partition, tuple[Opportunity, ...]] = {}
    for partition in Partition:
        existing = tuple(current.get(partition, ()))
        if partition == key:
            placed = False
            rebuilt = []
            for o in existing:
                if o.id in ids:
                    if not placed:
                        rebuilt.append(opportunity)
                        placed = True
                    continue
                rebuilt.append(o)
            if not placed:
                rebuilt.append(opportunity)
            changes[partition] = tuple(rebuilt)
        elif any(o.id in ids for o in existing):
            changes[partition] = tuple(o for o in existing if o.id not in ids)
    return changes


def pick_confirmed_role(
    server: Opportunity,
    known_role_ids: set[str],
    role_name: Optional[str] = None,
) -> Optional[Role]:
    """
    Find the role the server created for an add-role request.

    Candidates are server roles whose ids the client has not seen yet; ties
    are broken by role name, then by taking the most recently appended.
    """
    candidates = [r for r in server.roles if r.id not in known_role_ids]
    if role_name:
        named = [r for r in candidates if r.role_name == role_name]
        if named:
            candidates = named
    return candidates[-1] if candidates else None


def _locate(current: Partitions, opportunity_id: str, keys: tuple[Partition, ...]) -> Optional[Partition]:
    for key in keys:
        if any(o.id == opportunity_id for o in current.get(key, ())):
            return key
    return None


def _find_role(opportunity: Opportunity, role_id: str) -> Optional[Role]:
    for role in opportunity.roles:
        if role.id == role_id:
            return role
    return None


def _get(current: Partitions, key: Partition, opportunity_id: str) -> Opportunity:
    for o in current.get(key, ()):
        if o.id == opportunity_id:
            return o
    raise OpportunityNotFoundError(f"Opportunity {opportunity_id} not found", opportunity_id)


# ==========================================================================
# Generator
# ==========================================================================

class OptimisticPatchGenerator:
    """
    Builds optimistic patches and the matching reconciliation patches.

    ``target_keys`` resolves the partitions an intent touches so they can
    be cancelled and captured before the optimistic patch is computed.
    """

    def __init__(
        self,
        temp_id_factory: Optional[Callable[[], str]] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._temp_id_factory = temp_id_factory or (lambda: f"{settings.TEMP_ID_PREFIX}{uuid4()}")
        self._today = today or date.today

    def new_temp_id(self) -> str:
        return self._temp_id_factory()

    # ==================== Key resolution ====================

    def target_keys(self, current: Partitions, intent: MutationIntent) -> tuple[Partition, ...]:
        if isinstance(intent, CreateOpportunity):
            return (Partition.IN_PROGRESS,)

        if isinstance(intent, AddRole):
            key = _locate(current, intent.opportunity_id, Partition.open_partitions())
            if key is None:
                raise OpportunityNotFoundError(
                    f"Opportunity {intent.opportunity_id} is not open for new roles",
                    intent.opportunity_id,
                )
            return (key,)

        if isinstance(intent, MoveOpportunity):
            source = intent.source or _locate(current, intent.opportunity_id, tuple(Partition))
            if source is None:
                raise OpportunityNotFoundError(
                    f"Opportunity {intent.opportunity_id} not found", intent.opportunity_id
                )
            if source == intent.destination:
                return (source,)
            return (source, intent.destination)

        if isinstance(intent, (UpdateRoleStatus, UpdateRole)):
            key = self._require(current, intent.opportunity_id)
            if _find_role(_get(current, key, intent.opportunity_id), intent.role_id) is None:
                raise OpportunityNotFoundError(
                    f"Role {intent.role_id} not found in opportunity {intent.opportunity_id}",
                    intent.opportunity_id,
                )
            return (key,)

        if isinstance(intent, UpdateOpportunity):
            return (self._require(current, intent.opportunity_id),)

        raise TypeError(f"Unsupported intent: {type(intent).__name__}")

    def _require(self, current: Partitions, opportunity_id: str) -> Partition:
        key = _locate(current, opportunity_id, tuple(Partition))
        if key is None:
            raise OpportunityNotFoundError(f"Opportunity {opportunity_id} not found", opportunity_id)
        return key

    # ==================== Optimistic patches ====================

    def generate(self, current: Partitions, intent: MutationIntent) -> Patch:
        keys = self.target_keys(current, intent)

        if isinstance(intent, CreateOpportunity):
            return self._create_opportunity(current, intent, keys)
        if isinstance(intent, AddRole):
            return self._add_role(intent, keys)
        if isinstance(intent, MoveOpportunity):
            return self._move(current, intent, keys)
        if isinstance(intent, UpdateRoleStatus):
            return Patch(
                keys=keys,
                optimistic=Confirmed(with_role_status(
                    _find_role(_get(current, keys[0], intent.opportunity_id), intent.role_id),
                    intent.status,
                )),
                opportunity_id=intent.opportunity_id,
                transform=lambda o: map_role(o, intent.role_id, lambda r: with_role_status(r, intent.status)),
            )
        if isinstance(intent, UpdateRole):
            update = {
                k: v for k, v in normalize_fields(Role, intent.fields).items()
                if k not in _PROTECTED_ROLE_FIELDS
            }
            role = _find_role(_get(current, keys[0], intent.opportunity_id), intent.role_id)
            return Patch(
                keys=keys,
                optimistic=Confirmed(role.model_copy(update=update)),
                opportunity_id=intent.opportunity_id,
                transform=lambda o: map_role(o, intent.role_id, lambda r: r.model_copy(update=update)),
            )
        if isinstance(intent, UpdateOpportunity):
            update = {
                k: v for k, v in normalize_fields(Opportunity, intent.fields).items()
                if k not in _PROTECTED_OPPORTUNITY_FIELDS
            }
            target = _get(current, keys[0], intent.opportunity_id)
            return Patch(
                keys=keys,
                optimistic=Confirmed(target.model_copy(update=update)),
                opportunity_id=intent.opportunity_id,
                transform=lambda o: o.model_copy(update=update),
            )
        raise TypeError(f"Unsupported intent: {type(intent).__name__}")

    def _create_opportunity(
        self, current: Partitions, intent: CreateOpportunity, keys: tuple[Partition, ...]
    ) -> Patch:
        temp_id = self.new_temp_id()
        fields = normalize_fields(Opportunity, intent.fields)
        fields.update(
            id=temp_id,
            status=OpportunityStatus.IN_PROGRESS,
            open_date=self._today().isoformat(),
            roles=(),
        )
        fields.setdefault("client_name", "")
        fields.setdefault("opportunity_name", "")
        fields.setdefault("expected_start_date", "")
        fields.setdefault("probability", 0)
        # Unvalidated on purpose: invalid input must still be shown, then rolled back
        pending = Opportunity.model_construct(**fields)
        key = keys[0]
        return Patch(
            keys=keys,
            optimistic=Pending(pending, temp_id),
            partitions={key: tuple(current.get(key, ())) + (pending,)},
        )

    def _add_role(self, intent: AddRole, keys: tuple[Partition, ...]) -> Patch:
        temp_id = self.new_temp_id()
        fields = normalize_fields(Role, intent.fields)
        grade = fields.get("required_grade", Grade.SE)
        if isinstance(grade, str) and grade in Grade._value2member_map_:
            grade = Grade(grade)
        allocation = fields.get("allocation")
        role = Role.model_construct(
            id=temp_id,
            role_name=fields.get("role_name", ""),
            required_grade=grade,
            allocation=100 if allocation is None else allocation,
            comments=fields.get("comments") or "",
            status=RoleStatus.OPEN,
            assigned_member=None,
            assigned_member_ids=(),
            needs_hire=fields.get("needs_hire", True),
            new_hire_name=None,
        )
        return Patch(
            keys=keys,
            optimistic=Pending(role, temp_id),
            opportunity_id=intent.opportunity_id,
            transform=lambda o: o.model_copy(update={"roles": o.roles + (role,)}),
        )

    def _move(self, current: Partitions, intent: MoveOpportunity, keys: tuple[Partition, ...]) -> Patch:
        source = keys[0]
        target = _get(current, source, intent.opportunity_id)
        moved = target.model_copy(update={"status": intent.destination.status})
        if source == intent.destination:
            partitions = {
                source: tuple(moved if o.id == moved.id else o for o in current.get(source, ()))
            }
        else:
            partitions = {
                source: tuple(o for o in current.get(source, ()) if o.id != moved.id),
                intent.destination: tuple(
                    o for o in current.get(intent.destination, ()) if o.id != moved.id
                ) + (moved,),
            }
        return Patch(keys=keys, optimistic=Confirmed(moved), partitions=partitions)

    # ==================== Reconciliation ====================

    def reconcile(
        self,
        current: Partitions,
        intent: MutationIntent,
        optimistic: Optional[OptimisticEntity],
        server: Opportunity,
    ) -> Optional[Patch]:
        """
        Patch that swaps optimistic data for the server's, against current state.

        Pending entities are matched by their temporary id, confirmed ones
        by their stable id. Returns None when there is nothing left to swap
        (for example a refetch already replaced the partition).
        """
        if isinstance(intent, (CreateOpportunity, MoveOpportunity)):
            match_id = optimistic.temp_id if isinstance(optimistic, Pending) else intent_opportunity_id(intent)
            located = _locate(current, match_id, tuple(Partition)) if match_id else None
            placed = server
            if located is not None and not isinstance(optimistic, Pending):
                # Role edits that landed while the move was in flight stay visible
                placed = server.model_copy(update={"roles": _get(current, located, match_id).roles})
            key = Partition.for_status(server.status)
            changes = place_opportunity(current, placed, key, match_id=match_id)
            return Patch(keys=tuple(changes), optimistic=Confirmed(placed), partitions=changes)

        opportunity_id = intent_opportunity_id(intent)
        key = _locate(current, opportunity_id, tuple(Partition))
        if key is None:
            return None

        patch = self._reconcile_entity(current, intent, optimistic, server, key, opportunity_id)
        destination = Partition.for_status(server.status)
        if destination == key:
            return patch

        # The server changed the lifecycle status (e.g. completed the
        # opportunity); follow it so the opportunity stays in exactly one partition
        existing = _get(current, key, opportunity_id)
        placed = patch.transform(existing) if patch is not None else existing
        placed = placed.model_copy(update={"status": server.status})
        changes = place_opportunity(current, placed, destination)
        return Patch(
            keys=tuple(changes),
            optimistic=patch.optimistic if patch is not None else Confirmed(server),
            partitions=changes,
        )

    def _reconcile_entity(
        self,
        current: Partitions,
        intent: MutationIntent,
        optimistic: Optional[OptimisticEntity],
        server: Opportunity,
        key: Partition,
        opportunity_id: str,
    ) -> Optional[Patch]:
        if isinstance(intent, AddRole):
            if not isinstance(optimistic, Pending):
                return None
            existing = _get(current, key, opportunity_id)
            known = {r.id for r in existing.roles}
            confirmed = pick_confirmed_role(server, known, optimistic.entity.role_name)
            if confirmed is None:
                return None
            temp_id = optimistic.temp_id
            return Patch(
                keys=(key,),
                optimistic=Confirmed(confirmed),
                opportunity_id=opportunity_id,
                transform=lambda o: replace_role(o, temp_id, confirmed),
            )

        if isinstance(intent, (UpdateRoleStatus, UpdateRole)):
            confirmed = _find_role(server, intent.role_id)
            if confirmed is None:
                return None
            return Patch(
                keys=(key,),
                optimistic=Confirmed(confirmed),
                opportunity_id=opportunity_id,
                transform=lambda o: replace_role(o, intent.role_id, confirmed),
            )

        if isinstance(intent, UpdateOpportunity):
            update = server.model_dump(exclude={"id", "roles", "status"})
            return Patch(
                keys=(key,),
                optimistic=Confirmed(server),
                opportunity_id=opportunity_id,
                transform=lambda o: o.model_copy(update=update),
            )

        raise TypeError(f"Unsupported intent: {type(intent).__name__}")


def intent_opportunity_id(intent: MutationIntent) -> Optional[str]:
    return getattr(intent, "opportunity_id", None)
