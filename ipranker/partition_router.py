"""
Partition Router
================

Maps a partition key to exactly one PartitionHandle. Each handle is a
single-worker actor: an asyncio queue drained by one task, so every ingest
and compute_top for a partition runs one at a time in arrival order while
different partitions proceed independently.

Key Features:
- Single writer per partition: no shared locks between partitions
- Sentinel partition for missing keys
- Idle handles are reaped periodically to keep memory bounded
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ipranker.ewma_tracker import EWMATracker, throughput_mbps
from ipranker.models import IngestResult, RankedResult, Sample
from ipranker.ranking_config import RankingConfig
from ipranker.ranking_engine import RankingEngine

logger = logging.getLogger(__name__)

UNKNOWN_PARTITION = "unknown"


def _cancel_when_abandoned(operation: asyncio.Future, caller_future: asyncio.Future):
    if caller_future.cancelled() and not operation.done():
        operation.cancel()


class PartitionHandle:
    """Serialized execution context for one partition"""

    def __init__(self, partition: str, tracker: EWMATracker, engine: RankingEngine):
        self.partition = partition
        self.tracker = tracker
        self.engine = engine

        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self.in_flight = False
        self.closed = False

        self.processed = 0
        self.failed = 0
        self.last_active = time.monotonic()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def is_idle(self) -> bool:
        return not self.in_flight and self._queue.empty()

    def touch(self):
        self.last_active = time.monotonic()

    def _ensure_worker(self):
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name=f"partition-{self.partition}"
            )

    async def _submit(self, operation: Callable[..., Awaitable[Any]], *args) -> Any:
        if self.closed:
            raise RuntimeError(f"Partition handle {self.partition!r} is closed")

        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((operation, args, future))
        self.touch()
        self._ensure_worker()
        return await future

    async def _run(self):
        """Drain the queue one operation at a time"""
        while True:
            operation, args, future = await self._queue.get()
            try:
                if future.cancelled():
                    # Caller gave up before the operation started
                    continue

                self.in_flight = True
                task = asyncio.ensure_future(operation(*args))
                future.add_done_callback(lambda f, t=task: _cancel_when_abandoned(t, f))
                try:
                    await asyncio.wait({task})
                except asyncio.CancelledError:
                    task.cancel()
                    if not future.done():
                        future.cancel()
                    raise

                if future.done():
                    continue
                if task.cancelled():
                    future.cancel()
                elif task.exception() is not None:
                    self.failed += 1
                    future.set_exception(task.exception())
                else:
                    future.set_result(task.result())
            finally:
                self.in_flight = False
                self.processed += 1
                self.touch()
                self._queue.task_done()

    async def _ingest(self, sample: Sample, throughput: float) -> IngestResult:
        stat = await self.tracker.update(self.partition, sample.endpoint, throughput, sample.observed_at)
        return IngestResult(partition=self.partition, stat=stat)

    async def ingest(self, sample: Sample) -> IngestResult:
        """
        Fold a sample into this partition.

        The sample is validated before it is queued, so an InvalidSample
        never reaches the actor or the store.
        """
        throughput = throughput_mbps(sample.bytes_transferred, sample.duration_ms)
        return await self._submit(self._ingest, sample, throughput)

    async def compute_top(self, now: int, limit: Optional[int] = None) -> List[RankedResult]:
        return await self._submit(self.engine.compute_top, self.partition, now, limit)

    async def close(self):
        """Stop the worker. Queued operations are cancelled."""
        self.closed = True
        while not self._queue.empty():
            _operation, _args, future = self._queue.get_nowait()
            if not future.done():
                future.cancel()
            self._queue.task_done()

        if self._worker and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

    def get_stats(self) -> dict:
        return {
            'pending': self.pending,
            'in_flight': self.in_flight,
            'processed': self.processed,
            'failed': self.failed,
            'idle_seconds': round(time.monotonic() - self.last_active, 1),
        }


class PartitionRouter:
    """Resolves partition keys to their single owning handle"""

    def __init__(self, tracker: EWMATracker, engine: RankingEngine, config: RankingConfig):
        self.tracker = tracker
        self.engine = engine
        self.config = config
        self.handles: Dict[str, PartitionHandle] = {}

        self.cleanup_interval = 60.0
        self.last_cleanup = time.monotonic()
        self.reaped_total = 0

    @staticmethod
    def normalize_key(partition_key: Optional[str]) -> str:
        """Partition keys are used verbatim; empty ones map to the sentinel partition"""
        if partition_key is None:
            return UNKNOWN_PARTITION
        key = str(partition_key).strip()
        return key or UNKNOWN_PARTITION

    def resolve(self, partition_key: Optional[str]) -> PartitionHandle:
        key = self.normalize_key(partition_key)

        handle = self.handles.get(key)
        if handle is None or handle.closed:
            handle = PartitionHandle(key, self.tracker, self.engine)
            self.handles[key] = handle
            logger.debug(f"Created partition handle for {key}")
        handle.touch()

        self._cleanup_if_needed()
        return handle

    async def ingest(self, partition_key: Optional[str], sample: Sample) -> IngestResult:
        return await self.resolve(partition_key).ingest(sample)

    async def compute_top(self, partition_key: Optional[str], now: int,
                          limit: Optional[int] = None) -> List[RankedResult]:
        return await self.resolve(partition_key).compute_top(now, limit)

    def _cleanup_if_needed(self):
        current_time = time.monotonic()
        if current_time - self.last_cleanup < self.cleanup_interval:
            return
        self.reap_idle(current_time)
        self.last_cleanup = current_time

    def reap_idle(self, current_time: Optional[float] = None) -> int:
        """Drop handles with no queued or running work that have been idle too long"""
        if current_time is None:
            current_time = time.monotonic()

        idle_keys = [
            key for key, handle in self.handles.items()
            if handle.is_idle and current_time - handle.last_active >= self.config.handle_idle_seconds
        ]

        for key in idle_keys:
            handle = self.handles.pop(key)
            handle.closed = True
            if handle._worker and not handle._worker.done():
                handle._worker.cancel()

        if idle_keys:
            self.reaped_total += len(idle_keys)
            logger.info(f"Partition router cleanup: removed {len(idle_keys)} idle partition handles")

        return len(idle_keys)

    async def close(self):
        """Stop every partition worker"""
        handles = list(self.handles.values())
        self.handles.clear()
        for handle in handles:
            await handle.close()
        logger.info(f"Partition router closed ({len(handles)} handles)")

    def get_stats(self) -> dict:
        return {
            'active_partitions': len(self.handles),
            'pending_operations': sum(h.pending for h in self.handles.values()),
            'processed_operations': sum(h.processed for h in self.handles.values()),
            'reaped_total': self.reaped_total,
            'handle_idle_seconds': self.config.handle_idle_seconds,
            'partitions': {key: handle.get_stats() for key, handle in self.handles.items()},
        }
