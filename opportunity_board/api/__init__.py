"""
Opportunity Board - Remote API
==============================

Abstract remote contract, the httpx client and the in-memory FastAPI server.
"""

from .base import RemoteOpportunityApi
from .client import OpportunityApiClient

__all__ = ["RemoteOpportunityApi", "OpportunityApiClient"]
