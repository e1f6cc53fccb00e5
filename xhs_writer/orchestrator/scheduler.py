"""
Maintenance Scheduler.

APScheduler-based periodic upkeep: the cache sweep and the credential
revalidation that the core itself only performs lazily.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..clients.search_client import SearchClient
from ..config import CacheConfig
from .cache_manager import CacheManager
from .credential_pool import CredentialPool

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """
    Background scheduler for cache and credential maintenance.

    Scheduled Tasks:
        - Every N hours (1 by default): Sweep expired, corrupt and surplus cache files
        - Every M hours (6 by default): Probe every pooled credential

    Revalidation runs in a fresh event loop on the scheduler thread and
    uses its own search client for the duration of the run.

    Example:
        >>> scheduler = MaintenanceScheduler(cache, [search_pool, detail_pool])
        >>> scheduler.start()
        >>> # ... let it run ...
        >>> scheduler.stop()
    """

    def __init__(
        self,
        cache: CacheManager,
        pools: list[CredentialPool],
        sweep_interval_hours: Optional[int] = None,
        revalidate_interval_hours: int = 6,
        client_factory: Callable[[], SearchClient] = SearchClient,
    ):
        self.cache = cache
        self.pools = list(pools)
        self.sweep_interval_hours = sweep_interval_hours or CacheConfig.SWEEP_INTERVAL_HOURS
        self.revalidate_interval_hours = revalidate_interval_hours
        self.client_factory = client_factory
        self.scheduler = BackgroundScheduler()

        # State management
        self._is_running = False
        self._last_sweep: Optional[datetime] = None
        self._last_revalidation: Optional[datetime] = None

        # Statistics
        self._stats = {
            "sweeps": 0,
            "files_cleaned": 0,
            "revalidations": 0,
            "credentials_probed": 0,
            "errors": 0,
        }

    def start(self) -> None:
        """Register the maintenance jobs and start the scheduler."""
        if self._is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler.add_job(
            func=self.run_sweep,
            trigger=IntervalTrigger(hours=self.sweep_interval_hours),
            id="sweep_cache",
            name="Cache Sweep",
            replace_existing=True,
            max_instances=1,
        )

        if self.pools:
            self.scheduler.add_job(
                func=self.run_revalidation,
                trigger=IntervalTrigger(hours=self.revalidate_interval_hours),
                id="revalidate_credentials",
                name="Credential Revalidation",
                replace_existing=True,
                max_instances=1,
            )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            "MaintenanceScheduler started",
            extra={"jobs": [job.id for job in self.scheduler.get_jobs()]},
        )

        # Sweep once immediately
        self.run_sweep()

    def stop(self, wait: bool = True) -> None:
        """
        Stop the scheduler.

        Args:
            wait: If True, wait for running jobs to complete (default: True)
        """
        if not self._is_running:
            logger.warning("Scheduler is not running")
            return

        self.scheduler.shutdown(wait=wait)
        self._is_running = False
        logger.info("MaintenanceScheduler stopped")

    def run_sweep(self) -> None:
        """Sweep the cache; failures are logged and counted."""
        try:
            report = self.cache.sweep()
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Error during cache sweep: {e}", exc_info=True)
            return

        self._last_sweep = datetime.now()
        self._stats["sweeps"] += 1
        self._stats["files_cleaned"] += report.cleaned
        logger.info(
            f"Cache sweep completed: {report.cleaned} of {report.total_files} files removed",
            extra={"cache_enabled": report.cache_enabled},
        )

    def run_revalidation(self) -> None:
        """
        Probe every pooled credential.

        Creates a new event loop for the run to avoid conflicts with the
        scheduler thread.
        """
        try:
            loop = asyncio.new_event_loop()
            try:
                loop.run_until_complete(self._revalidate())
            finally:
                loop.close()
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Error during credential revalidation: {e}", exc_info=True)

    async def _revalidate(self) -> None:
        async with self.client_factory() as client:
            for pool in self.pools:
                results = await pool.validate_all(prober=client)
                self._stats["credentials_probed"] += len(results)
                logger.info(
                    f"Revalidated pool '{pool.name}': "
                    f"{sum(results.values())}/{len(results)} accepted"
                )
        self._last_revalidation = datetime.now()
        self._stats["revalidations"] += 1

    def get_statistics(self) -> dict:
        """
        Get scheduler statistics.

        Returns:
            Dictionary with scheduler state, last activity and job info
        """
        return {
            "is_running": self._is_running,
            "last_sweep": self._last_sweep.isoformat() if self._last_sweep else None,
            "last_revalidation": (
                self._last_revalidation.isoformat() if self._last_revalidation else None
            ),
            **self._stats,
            "scheduled_jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                }
                for job in self.scheduler.get_jobs()
            ]
            if self._is_running
            else [],
        }

    def is_running(self) -> bool:
        """Check if scheduler is currently running."""
        return self._is_running

    def __repr__(self) -> str:
        return (
            f"MaintenanceScheduler(pools={len(self.pools)}, "
            f"sweep_every={self.sweep_interval_hours}h, running={self._is_running})"
        )
