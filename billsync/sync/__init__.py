"""
Sync Engine Package

Caching, retrying and reconciling access to the bill store.
"""

from billsync.sync.cache import BillCache, CacheEntry
from billsync.sync.errors import (
    LoadFailedError,
    OperationTimeoutError,
    RetryExhaustedError,
    SaveFailedError,
    SyncError,
)
from billsync.sync.fetcher import AggregateFetcher
from billsync.sync.metrics import CacheMetrics, PerformanceMonitor, QueryMetrics
from billsync.sync.preloader import Preloader
from billsync.sync.retry import RetryingExecutor
from billsync.sync.writer import ReconciliationWriter

__all__ = [
    # Components
    "AggregateFetcher",
    "BillCache",
    "CacheEntry",
    "Preloader",
    "ReconciliationWriter",
    "RetryingExecutor",
    # Metrics
    "CacheMetrics",
    "PerformanceMonitor",
    "QueryMetrics",
    # Errors
    "LoadFailedError",
    "OperationTimeoutError",
    "RetryExhaustedError",
    "SaveFailedError",
    "SyncError",
]
