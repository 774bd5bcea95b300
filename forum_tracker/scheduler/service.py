"""
Scheduler service - drives the origin refresh and the tenant sweep.

Each job runs on its own Ticker. A ticker invokes its callback, then
sleeps for the interval; the sleep function is injectable so tests can
drive ticks without waiting.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from forum_tracker.scheduler.config import SchedulerConfig
from forum_tracker.scheduler.refresh import RefreshCoordinator
from forum_tracker.scheduler.tenants import TenantSweep

logger = structlog.get_logger(__name__)


class Ticker:
    """
    Periodic async job.

    Usage:
        ticker = Ticker("refresh", 900, coordinator.refresh)
        ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[Any]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._sleep = sleep
        self._running = False
        self._task: asyncio.Task | None = None
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self, max_ticks: int | None = None) -> None:
        """Tick until stopped, or until ``max_ticks`` ticks have run."""
        self._running = True
        logger.info("Ticker started", ticker=self.name, interval=self.interval_seconds)
        try:
            while self._running:
                try:
                    await self._callback()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("Scheduled job failed", ticker=self.name, error=str(e))
                self.ticks += 1
                if max_ticks is not None and self.ticks >= max_ticks:
                    break
                await self._sleep(self.interval_seconds)
        finally:
            self._running = False
            logger.info("Ticker stopped", ticker=self.name, ticks=self.ticks)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"ticker_{self.name}")
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None


class RefreshScheduler:
    """
    Background scheduler for one process.

    Usage:
        scheduler = RefreshScheduler(coordinator, sweep, config)
        scheduler.start()      # inside the API lifespan
        await scheduler.stop()

        await scheduler.run_forever()  # standalone worker
    """

    def __init__(
        self,
        coordinator: RefreshCoordinator,
        sweep: TenantSweep | None = None,
        config: SchedulerConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or SchedulerConfig()
        self._tickers = [
            Ticker(
                "origin_refresh",
                self.config.interval_seconds,
                coordinator.refresh,
                sleep=sleep,
            )
        ]
        if sweep is not None:
            self._tickers.append(
                Ticker(
                    "tenant_sweep",
                    self.config.tenant_check_interval_seconds,
                    sweep.run,
                    sleep=sleep,
                )
            )

    @property
    def tickers(self) -> list[Ticker]:
        return list(self._tickers)

    @property
    def is_running(self) -> bool:
        return any(t.is_running for t in self._tickers)

    def start(self) -> list[asyncio.Task]:
        logger.info("Starting scheduler", jobs=[t.name for t in self._tickers])
        return [t.start() for t in self._tickers]

    async def stop(self) -> None:
        logger.info("Stopping scheduler")
        for ticker in self._tickers:
            await ticker.stop()

    async def run_forever(self) -> None:
        tasks = self.start()
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
        finally:
            await self.stop()
