"""
Opportunity Board - Derived Views
=================================

Read-only values computed from cached opportunities: hiring needs, the
completion rule, start date urgency and the table / month groupings the
dashboard renders.
"""

import enum
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Union

from opportunity_board.core.models import (
    TERMINAL_ROLE_STATUSES,
    Grade,
    Opportunity,
    OpportunityStatus,
    Role,
    RoleStatus,
)

UNKNOWN_MONTH_KEY = "0000-00"
UNKNOWN_MONTH_LABEL = "Unknown Date"

URGENT_WEEKS = 6
WARNING_WEEKS = 8


class Urgency(str, enum.Enum):
    URGENT = "urgent"
    WARNING = "warning"
    SAFE = "safe"


# ==========================================================================
# Opportunity-level rules
# ==========================================================================

def has_hiring_needs(opportunity: Opportunity) -> bool:
    return any(role.needs_hire for role in opportunity.roles)


def is_complete(opportunity: Opportunity) -> bool:
    """
    Completion rule: at least one role, and every role is Won, Lost or Staffed.

    An opportunity without roles is never complete.
    """
    if not opportunity.roles:
        return False
    return all(role.status in TERMINAL_ROLE_STATUSES for role in opportunity.roles)


def roles_by_grade(opportunity: Opportunity, grade: Union[Grade, str]) -> tuple[Role, ...]:
    """Roles requiring ``grade``; the pseudo-grade ``"all"`` returns every role."""
    if grade == "all":
        return opportunity.roles
    return tuple(role for role in opportunity.roles if role.required_grade == grade)


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def weeks_until(start: str, today: Optional[date] = None) -> Optional[int]:
    """Whole weeks from ``today`` to ``start``, truncated toward zero."""
    start_date = _parse_date(start)
    if start_date is None:
        return None
    days = (start_date - (today or date.today())).days
    return int(days / 7)


def start_date_urgency(start: str, today: Optional[date] = None) -> Urgency:
    """
    Staffing urgency for an expected start date.

    Args:
        start: ISO date of the expected start
        today: Reference date (defaults to the current date)

    Returns:
        URGENT within six weeks, WARNING within eight, SAFE otherwise.
        Unparseable dates count as URGENT.
    """
    weeks = weeks_until(start, today)
    if weeks is None or weeks <= URGENT_WEEKS:
        return Urgency.URGENT
    if weeks <= WARNING_WEEKS:
        return Urgency.WARNING
    return Urgency.SAFE


# ==========================================================================
# Table rows
# ==========================================================================

@dataclass(frozen=True)
class TableRow:
    """One row of the flattened opportunities table."""
    opportunity_id: str
    opportunity_name: str
    client_name: str
    expected_start_date: str
    probability: int
    opportunity_status: OpportunityStatus
    roles_count: int
    has_hiring_needs: bool
    is_first_row_for_opportunity: bool
    row_span: int
    comment: Optional[str] = None
    role_id: Optional[str] = None
    role_name: Optional[str] = None
    required_grade: Optional[Grade] = None
    role_status: Optional[RoleStatus] = None
    assigned_member_ids: tuple[str, ...] = ()
    allocation: Optional[int] = None
    needs_hire: Optional[bool] = None
    new_hire_name: Optional[str] = None

    @property
    def is_role_row(self) -> bool:
        return self.role_id is not None


def flatten_opportunities(opportunities: Iterable[Opportunity]) -> list[TableRow]:
    """One row per role, or a single row for an opportunity without roles."""
    rows: list[TableRow] = []
    for opportunity in opportunities:
        common = dict(
            opportunity_id=opportunity.id,
            opportunity_name=opportunity.opportunity_name,
            client_name=opportunity.client_name,
            expected_start_date=opportunity.expected_start_date,
            probability=opportunity.probability,
            opportunity_status=opportunity.status,
            roles_count=len(opportunity.roles),
            has_hiring_needs=has_hiring_needs(opportunity),
        )
        if not opportunity.roles:
            rows.append(TableRow(
                **common,
                is_first_row_for_opportunity=True,
                row_span=1,
                comment=opportunity.comment,
            ))
            continue

        for index, role in enumerate(opportunity.roles):
            first = index == 0
            rows.append(TableRow(
                **common,
                is_first_row_for_opportunity=first,
                row_span=len(opportunity.roles),
                comment=opportunity.comment if first else None,
                role_id=role.id,
                role_name=role.role_name,
                required_grade=role.required_grade,
                role_status=role.status,
                assigned_member_ids=role.assigned_member_ids,
                allocation=role.allocation,
                needs_hire=role.needs_hire,
                new_hire_name=role.new_hire_name,
            ))
    return rows


# ==========================================================================
# Month grouping
# ==========================================================================

@dataclass(frozen=True)
class MonthGroup:
    month_key: str  # yyyy-MM
    month_label: str
    opportunities: tuple[Opportunity, ...]


def group_by_month(opportunities: Iterable[Opportunity]) -> list[MonthGroup]:
    """
    Group opportunities by the month they were opened, newest first.

    Opportunities without a usable open date end up in a trailing
    "Unknown Date" group.
    """
    dated = [(o, _parse_date(o.open_date)) for o in opportunities]
    dated.sort(key=lambda pair: pair[1] or date.min, reverse=True)

    groups: dict[str, list[Opportunity]] = {}
    for opportunity, opened in dated:
        key = opened.strftime("%Y-%m") if opened else UNKNOWN_MONTH_KEY
        groups.setdefault(key, []).append(opportunity)

    result = []
    for key, members in groups.items():
        if key == UNKNOWN_MONTH_KEY:
            label = UNKNOWN_MONTH_LABEL
        else:
            label = date.fromisoformat(f"{key}-01").strftime("%B %Y")
        result.append(MonthGroup(month_key=key, month_label=label, opportunities=tuple(members)))
    return result
