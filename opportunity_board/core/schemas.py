"""
Opportunity Board - Pydantic Schemas
====================================

Input schemas for the remote operations and the dashboard filter model.
The remote client validates every request against these before it goes
out; field-level failures surface as InputValidationError.
"""

import enum
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from opportunity_board.core.config import settings
from opportunity_board.core.models import ISO_DATE_PATTERN, Grade, OpportunityStatus, RoleStatus


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        loc_by_alias=False,
        str_strip_whitespace=True,
        extra="ignore",
    )

    def to_payload(self) -> dict[str, Any]:
        """Wire representation: camelCase, only the fields the caller set."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


# ==========================================================================
# Opportunity Schemas
# ==========================================================================

class OpportunityCreate(BaseSchema):
    """Schema for creating an opportunity."""

    client_name: str = Field(min_length=1, max_length=255)
    opportunity_name: str = Field(min_length=1, max_length=255)
    expected_start_date: str = Field(pattern=ISO_DATE_PATTERN)
    probability: int = Field(50, ge=0, le=100)
    comment: Optional[str] = None


class OpportunityUpdate(BaseSchema):
    """Schema for updating an opportunity (partial)."""

    client_name: Optional[str] = Field(None, min_length=1, max_length=255)
    opportunity_name: Optional[str] = Field(None, min_length=1, max_length=255)
    expected_start_date: Optional[str] = Field(None, pattern=ISO_DATE_PATTERN)
    probability: Optional[int] = Field(None, ge=0, le=100)
    comment: Optional[str] = None


class OpportunityMoveRequest(BaseSchema):
    """Schema for moving opportunity to new status."""

    status: OpportunityStatus


# ==========================================================================
# Role Schemas
# ==========================================================================

class RoleCreate(BaseSchema):
    """Schema for adding a role to an opportunity."""

    role_name: str = Field(min_length=1, max_length=255)
    required_grade: Grade
    allocation: int = Field(100, ge=0, le=100)
    needs_hire: bool = True
    comments: str = ""


class RoleUpdate(BaseSchema):
    """Schema for editing a role (partial)."""

    role_name: Optional[str] = Field(None, min_length=1, max_length=255)
    required_grade: Optional[Grade] = None
    allocation: Optional[int] = Field(None, ge=0, le=100)
    needs_hire: Optional[bool] = None
    comments: Optional[str] = None
    assigned_member_ids: Optional[tuple[str, ...]] = None
    new_hire_name: Optional[str] = None


class RoleStatusUpdate(BaseSchema):
    """Schema for changing a role's status."""

    status: RoleStatus


# ==========================================================================
# Filter Schemas
# ==========================================================================

class NeedsHireFilter(str, enum.Enum):
    YES = "yes"
    NO = "no"
    ALL = "all"


_SCRIPT_TAG = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_ANY_TAG = re.compile(r"<[^>]*>")


def sanitize_client_text(value: str, max_length: Optional[int] = None) -> str:
    """Strip markup and surrounding whitespace, then cap the length."""
    max_length = max_length or settings.CLIENT_FILTER_MAX_LENGTH
    cleaned = _ANY_TAG.sub("", _SCRIPT_TAG.sub("", value or ""))
    return cleaned.strip()[:max_length]


class OpportunityFilters(BaseSchema):
    """
    Dashboard filter set.

    Never rejects input: unknown grades are dropped, an unknown hiring
    flag falls back to ``all`` and the probability range is clamped.
    """

    model_config = ConfigDict(frozen=True)

    client: str = ""
    grades: tuple[Grade, ...] = ()
    needs_hire: NeedsHireFilter = NeedsHireFilter.ALL
    probability: Optional[tuple[int, int]] = None

    @field_validator("client", mode="before")
    @classmethod
    def sanitize_client(cls, v: Any) -> str:
        if v is None:
            return ""
        return sanitize_client_text(str(v))

    @field_validator("grades", mode="before")
    @classmethod
    def sanitize_grades(cls, v: Any) -> tuple:
        if v is None:
            return ()
        if isinstance(v, str):
            v = v.split(",")
        valid = {g.value for g in Grade}
        seen: list[str] = []
        for raw in v:
            grade = raw.value if isinstance(raw, Grade) else str(raw).strip().upper()
            if grade in valid and grade not in seen:
                seen.append(grade)
        return tuple(seen)

    @field_validator("needs_hire", mode="before")
    @classmethod
    def sanitize_needs_hire(cls, v: Any) -> str:
        if isinstance(v, NeedsHireFilter):
            return v.value
        value = str(v or "").strip().lower()
        if value not in {f.value for f in NeedsHireFilter}:
            return NeedsHireFilter.ALL.value
        return value

    @field_validator("probability", mode="before")
    @classmethod
    def sanitize_probability(cls, v: Any) -> Optional[tuple[int, int]]:
        if v is None:
            return None
        try:
            low, high = (max(0, min(100, int(bound))) for bound in v)
        except (TypeError, ValueError, OverflowError):
            return None
        bounds = (min(low, high), max(low, high))
        # The full range filters nothing
        return None if bounds == (0, 100) else bounds

    @property
    def has_active_filters(self) -> bool:
        return (
            self.client != ""
            or len(self.grades) > 0
            or self.needs_hire != NeedsHireFilter.ALL
            or self.probability is not None
        )

    def to_query_params(self) -> dict[str, Any]:
        """Query string parameters for the list endpoint; defaults omitted."""
        params: dict[str, Any] = {}
        if self.client:
            params["client"] = self.client
        if self.grades:
            params["grades"] = ",".join(g.value for g in self.grades)
        if self.needs_hire != NeedsHireFilter.ALL:
            params["needs_hire"] = self.needs_hire.value
        if self.probability is not None:
            params["min_probability"], params["max_probability"] = self.probability
        return params
