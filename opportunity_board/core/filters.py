"""
Opportunity filtering.

Pure functions over opportunity sequences; applying a filter twice gives
the same result as applying it once.
"""

from typing import Iterable, Optional

from opportunity_board.core.derivations import has_hiring_needs
from opportunity_board.core.models import Opportunity
from opportunity_board.core.schemas import NeedsHireFilter, OpportunityFilters


def matches_client(opportunity: Opportunity, client: str) -> bool:
    """Case-insensitive substring match on the client name."""
    if not client:
        return True
    return client.lower() in str(opportunity.client_name or "").lower()


def matches_grades(opportunity: Opportunity, grades: Iterable) -> bool:
    """Any role requiring one of ``grades``; an empty selection matches everything."""
    wanted = set(grades)
    if not wanted:
        return True
    return any(role.required_grade in wanted for role in opportunity.roles)


def matches_hiring_need(opportunity: Opportunity, needs_hire: NeedsHireFilter) -> bool:
    if needs_hire == NeedsHireFilter.ALL:
        return True
    has_needs = has_hiring_needs(opportunity)
    return has_needs if needs_hire == NeedsHireFilter.YES else not has_needs


def matches_probability(opportunity: Opportunity, bounds: Optional[tuple[int, int]]) -> bool:
    """
    Inclusive range check; ``None`` means no bound.

    A pending opportunity may carry unvalidated input; a probability that
    is not an integer never falls inside a range.
    """
    if bounds is None:
        return True
    probability = opportunity.probability
    if not isinstance(probability, int) or isinstance(probability, bool):
        return False
    low, high = bounds
    return low <= probability <= high


def matches(opportunity: Opportunity, filters: OpportunityFilters) -> bool:
    return (
        matches_client(opportunity, filters.client)
        and matches_grades(opportunity, filters.grades)
        and matches_hiring_need(opportunity, filters.needs_hire)
        and matches_probability(opportunity, filters.probability)
    )


def filter_opportunities(
    opportunities: Iterable[Opportunity],
    filters: Optional[OpportunityFilters] = None,
) -> tuple[Opportunity, ...]:
    """Opportunities satisfying every active filter, in their original order."""
    opportunities = tuple(opportunities)
    if filters is None or not filters.has_active_filters:
        return opportunities
    return tuple(o for o in opportunities if matches(o, filters))
