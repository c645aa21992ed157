"""
Opportunity Board - Core Package
================================

Entities, schemas, errors, the partition cache and the dashboard facade.
"""

from opportunity_board.core.config import settings

__all__ = ["settings"]
