"""
Finance Tracker - Client Core

Client-side state for a personal finance dashboard: cached users,
expenses and incomes, the monthly period filter, the month totals and
the edit-in-place workflow, all kept consistent with a remote backend.

DESIGN PRINCIPLES:
1. The server is the source of truth; the cache only mirrors it
2. Every mutation is followed by a full refresh, never a local patch
3. Totals are recomputed from scratch, never adjusted
4. Failures are surfaced to the user, never swallowed
5. The backend is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Tracker Team"
