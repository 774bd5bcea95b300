"""Refresh scheduling: origin refresh cycle, tenant sweep and tickers."""

from forum_tracker.scheduler.config import SchedulerConfig
from forum_tracker.scheduler.lock import LocalRefreshLock, RedisRefreshLock, RefreshLock
from forum_tracker.scheduler.refresh import (
    RefreshCoordinator,
    RefreshOutcome,
    RefreshStatus,
    RefreshSummary,
)
from forum_tracker.scheduler.service import RefreshScheduler, Ticker
from forum_tracker.scheduler.tenants import TenantSweep, TenantSweepResult, is_refresh_due

__all__ = [
    "LocalRefreshLock",
    "RedisRefreshLock",
    "RefreshCoordinator",
    "RefreshLock",
    "RefreshOutcome",
    "RefreshScheduler",
    "RefreshStatus",
    "RefreshSummary",
    "SchedulerConfig",
    "TenantSweep",
    "TenantSweepResult",
    "Ticker",
    "is_refresh_due",
]
