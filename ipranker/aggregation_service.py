"""
Aggregation Service
===================

Boundary between the HTTP layer and the aggregation core.

- report: validate a raw sample payload and fold it into its partition,
  bounded by the ingest timeout
- rank: read-through cache lookup, live recomputation on a miss, stale
  cache fallback when the store is down
- refresh: recompute and cache the configured hot partitions
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ipranker.errors import PartitionUnavailable
from ipranker.models import IngestResult, RankedResult, RankingResponse, RefreshReport, Sample, now_ms
from ipranker.partition_router import PartitionRouter
from ipranker.ranking_config import RankingConfig
from ipranker.result_cache import ResultCache, ranking_cache_key

logger = logging.getLogger(__name__)


def encode_ranking(top: List[RankedResult]) -> str:
    return json.dumps([result.to_dict() for result in top])


def decode_ranking(value: str) -> List[RankedResult]:
    return [RankedResult.from_dict(item) for item in json.loads(value)]


class AggregationService:
    """Ties the router, the optional result cache and configuration together"""

    def __init__(self, router: PartitionRouter, config: RankingConfig,
                 cache: Optional[ResultCache] = None, clock: Callable[[], int] = now_ms):
        self.router = router
        self.config = config
        self.cache = cache
        self.clock = clock

        self.stats = {
            'samples_accepted': 0,
            'samples_rejected': 0,
            'ingest_failures': 0,
            'rank_cache_hits': 0,
            'rank_recomputes': 0,
            'rank_stale_fallbacks': 0,
            'rank_failures': 0,
        }

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.default_limit
        return max(1, min(int(limit), self.config.max_limit))

    async def report(self, partition_key: Optional[str], payload: Dict[str, Any],
                     received_at: Optional[int] = None) -> IngestResult:
        """
        Ingest one sample reported for a partition.

        Raises:
            InvalidSample: for malformed payloads; nothing is stored
            PartitionUnavailable: if the store fails or the ingest timeout elapses
        """
        partition = self.router.normalize_key(partition_key)
        if received_at is None:
            received_at = self.clock()

        try:
            sample = Sample.from_payload(payload, received_at)
        except ValueError as e:
            self.stats['samples_rejected'] += 1
            logger.warning(f"Rejected sample for partition {partition}: {e}")
            raise

        try:
            result = await asyncio.wait_for(
                self.router.ingest(partition, sample),
                timeout=self.config.ingest_timeout_seconds)
        except asyncio.TimeoutError:
            self.stats['ingest_failures'] += 1
            logger.error(f"Ingest for {sample.endpoint} in partition {partition} timed out "
                         f"after {self.config.ingest_timeout_seconds}s")
            raise PartitionUnavailable(partition, "ingest timed out")
        except PartitionUnavailable as e:
            self.stats['ingest_failures'] += 1
            logger.error(f"Ingest failed: {e}")
            raise
        except ValueError as e:
            self.stats['samples_rejected'] += 1
            logger.warning(f"Rejected sample for partition {partition}: {e}")
            raise

        self.stats['samples_accepted'] += 1
        return result

    async def _cache_get(self, key: str) -> Optional[str]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning(f"Result cache read failed for {key}, recomputing: {e}")
            return None

    async def _cache_put(self, key: str, top: List[RankedResult], ttl_seconds: float):
        if self.cache is None:
            return
        try:
            await self.cache.put_with_ttl(key, encode_ranking(top), ttl_seconds)
        except Exception as e:
            logger.warning(f"Result cache write failed for {key}: {e}")

    async def _cache_get_stale(self, key: str) -> Optional[str]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get_stale(key)
        except Exception as e:
            logger.warning(f"Result cache stale read failed for {key}: {e}")
            return None

    async def rank(self, partition_key: Optional[str], limit: Optional[int] = None) -> RankingResponse:
        """
        Serve the ranking for a partition.

        Cached rankings hold config.default_limit entries, so larger limits
        always recompute. Never raises for store failures: the response
        carries an explicit error instead.
        """
        partition = self.router.normalize_key(partition_key)
        limit = self.clamp_limit(limit)
        key = ranking_cache_key(partition)
        cacheable = limit <= self.config.default_limit

        if cacheable:
            cached = await self._cache_get(key)
            if cached is not None:
                self.stats['rank_cache_hits'] += 1
                return RankingResponse(partition=partition, top=decode_ranking(cached)[:limit], cached=True)

        compute_limit = self.config.default_limit if cacheable else limit
        try:
            top = await self.router.compute_top(partition, self.clock(), compute_limit)
        except PartitionUnavailable as e:
            stale = await self._cache_get_stale(key)
            if stale is not None:
                self.stats['rank_stale_fallbacks'] += 1
                logger.warning(f"Serving stale ranking for {partition}: {e}")
                return RankingResponse(partition=partition, top=decode_ranking(stale)[:limit],
                                       cached=True, stale=True)

            self.stats['rank_failures'] += 1
            logger.error(f"No ranking available for {partition}: {e}")
            return RankingResponse(partition=partition, error='partition_unavailable', detail=str(e))

        self.stats['rank_recomputes'] += 1
        if cacheable:
            await self._cache_put(key, top, self.config.cache_ttl_seconds)
        return RankingResponse(partition=partition, top=top[:limit])

    async def _refresh_one(self, partition: str, report: RefreshReport):
        try:
            top = await self.router.compute_top(partition, self.clock(), self.config.default_limit)
            if self.cache is not None:
                await self.cache.put_with_ttl(ranking_cache_key(partition), encode_ranking(top),
                                              self.config.refresh_ttl_seconds)
        except Exception as e:
            logger.error(f"Scheduled refresh failed for partition {partition}: {e}")
            report.failed[partition] = str(e)
            return
        report.refreshed.append(partition)

    async def refresh(self, partitions: Optional[Iterable[str]] = None) -> RefreshReport:
        """Recompute and cache rankings for the hot partitions. One failure never aborts the rest."""
        if partitions is None:
            partitions = self.config.hot_partitions
        keys = list(dict.fromkeys(self.router.normalize_key(p) for p in partitions))

        report = RefreshReport()
        await asyncio.gather(*(self._refresh_one(partition, report) for partition in keys))

        if report.partial_failure:
            logger.warning(f"Scheduled refresh: {len(report.refreshed)}/{len(keys)} partitions refreshed, "
                           f"failed: {sorted(report.failed)}")
        else:
            logger.info(f"Scheduled refresh: {len(report.refreshed)} partitions refreshed")
        return report

    def get_stats(self) -> dict:
        return dict(self.stats)
