"""
Refresh Scheduler
=================

Background loop that periodically recomputes the rankings of the configured
hot partitions and writes them into the result cache.
"""

import asyncio
import logging
import time
from typing import Optional

from ipranker.aggregation_service import AggregationService
from ipranker.models import RefreshReport

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Runs AggregationService.refresh on a fixed interval"""

    def __init__(self, service: AggregationService, interval_seconds: float):
        self.service = service
        self.interval_seconds = interval_seconds

        self.running = False
        self.refresh_task: Optional[asyncio.Task] = None
        self.last_report: Optional[RefreshReport] = None

        self.stats = {
            'runs': 0,
            'partial_failures': 0,
            'last_run_at': None,
        }

    async def run_once(self) -> RefreshReport:
        report = await self.service.refresh()
        self.last_report = report
        self.stats['runs'] += 1
        self.stats['last_run_at'] = time.time()
        if report.partial_failure:
            self.stats['partial_failures'] += 1
        return report

    async def _refresh_loop(self):
        logger.info(f"🔁 Starting refresh loop every {self.interval_seconds}s "
                    f"for {len(self.service.config.hot_partitions)} partitions")

        while self.running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"❌ Refresh loop error: {e}")
            await asyncio.sleep(self.interval_seconds)

    def start(self):
        if self.running:
            return
        self.running = True
        self.refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())

    async def stop(self):
        self.running = False
        if self.refresh_task and not self.refresh_task.done():
            self.refresh_task.cancel()
            try:
                await self.refresh_task
            except asyncio.CancelledError:
                pass
        logger.info("🛑 Refresh loop stopped")

    def get_stats(self) -> dict:
        return {
            **self.stats,
            'running': self.running,
            'interval_seconds': self.interval_seconds,
            'last_report': self.last_report.to_dict() if self.last_report else None,
        }
