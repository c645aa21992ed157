"""
Opportunity Board - Entity Model
================================

Immutable entity definitions for opportunities, roles and members,
plus the partition enumeration that buckets opportunities by lifecycle.

Entities are frozen pydantic models and every sequence is a tuple, so a
value captured into a snapshot can never change underneath it.
"""

import enum
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ISO_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


# ==========================================================================
# Enums
# ==========================================================================

class OpportunityStatus(str, enum.Enum):
    """Lifecycle status of an opportunity."""
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    DONE = "Done"


class RoleStatus(str, enum.Enum):
    """Staffing status of a role."""
    OPEN = "Open"
    WON = "Won"
    STAFFED = "Staffed"
    LOST = "Lost"


class Grade(str, enum.Enum):
    """Consultant grades, most junior first."""
    JT = "JT"
    T = "T"
    ST = "ST"
    EN = "EN"
    SE = "SE"
    C = "C"
    SC = "SC"
    SM = "SM"


class Partition(str, enum.Enum):
    """Cache partition holding opportunities of one lifecycle status."""
    IN_PROGRESS = "in-progress"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"

    @property
    def status(self) -> OpportunityStatus:
        """Canonical opportunity status for this partition."""
        return PARTITION_STATUS[self]

    @classmethod
    def for_status(cls, status: OpportunityStatus) -> "Partition":
        for partition, partition_status in PARTITION_STATUS.items():
            if partition_status == status:
                return partition
        raise ValueError(f"No partition for status {status!r}")

    @classmethod
    def open_partitions(cls) -> tuple["Partition", ...]:
        """Partitions whose opportunities can still receive roles, in lookup order."""
        return (cls.IN_PROGRESS, cls.ON_HOLD)


PARTITION_STATUS: dict[Partition, OpportunityStatus] = {
    Partition.IN_PROGRESS: OpportunityStatus.IN_PROGRESS,
    Partition.ON_HOLD: OpportunityStatus.ON_HOLD,
    Partition.COMPLETED: OpportunityStatus.DONE,
}

# Roles in these states no longer need a hire
FILLED_ROLE_STATUSES = frozenset({RoleStatus.STAFFED, RoleStatus.WON})

# An opportunity whose roles are all in these states is complete
TERMINAL_ROLE_STATUSES = frozenset({RoleStatus.WON, RoleStatus.LOST, RoleStatus.STAFFED})


def needs_hire_for(status: RoleStatus) -> bool:
    return status not in FILLED_ROLE_STATUSES


# ==========================================================================
# Entities
# ==========================================================================

class EntityModel(BaseModel):
    """Base for cached entities: frozen, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        loc_by_alias=False,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
    )


class Member(EntityModel):
    """Team member that can be assigned to a role."""

    id: str
    full_name: str = Field(min_length=1)
    actual_grade: Grade
    allocation: int = Field(0, ge=0, le=100)
    available_from: Optional[str] = Field(None, pattern=ISO_DATE_PATTERN)


class Role(EntityModel):
    """Staffing role inside an opportunity."""

    id: str
    role_name: str = Field(min_length=1)
    required_grade: Grade
    allocation: int = Field(100, ge=0, le=100)
    comments: str = ""
    status: RoleStatus = RoleStatus.OPEN
    assigned_member: Optional[Member] = None
    assigned_member_ids: tuple[str, ...] = ()
    needs_hire: bool = True
    new_hire_name: Optional[str] = None


class Opportunity(EntityModel):
    """Sales opportunity owned by a client."""

    id: str
    client_name: str = Field(min_length=1)
    opportunity_name: str = Field(min_length=1)
    open_date: Optional[str] = Field(None, pattern=ISO_DATE_PATTERN)
    expected_start_date: str = Field(pattern=ISO_DATE_PATTERN)
    probability: int = Field(ge=0, le=100)
    status: OpportunityStatus = OpportunityStatus.IN_PROGRESS
    comment: Optional[str] = None
    roles: tuple[Role, ...] = ()


# ==========================================================================
# Optimistic entity wrappers
# ==========================================================================

EntityT = TypeVar("EntityT", Role, Opportunity)


@dataclass(frozen=True)
class Pending(Generic[EntityT]):
    """Entity shown before the server confirmed it, keyed by a client id."""
    entity: EntityT
    temp_id: str


@dataclass(frozen=True)
class Confirmed(Generic[EntityT]):
    """Entity that already carries a server-assigned id."""
    entity: EntityT


OptimisticEntity = Union[Pending, Confirmed]
