"""
Bill Sync - Source Package

A client-side cache and reconciliation layer for a rental-billing
application: monthly bills with their expenses and payments, served
from memory while the remote store stays consistent.

DESIGN PRINCIPLES:
1. Display from cache, refresh on demand
2. Saves are optimistic, failures roll the cache back
3. Retries never duplicate data
4. Every step must be auditable
5. Store layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Bill Sync Team"
