"""
Opportunity Board
=================

Optimistic mutation and cache-consistency engine for a staffing dashboard.
"""

__version__ = "0.1.0"
