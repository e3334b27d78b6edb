"""
Ranking Engine
==============

Scores every endpoint of a partition and returns the top entries.

    age        = max(0, now - last_observed_at) in seconds
    freshness  = exp(-age / tau)
    confidence = 1.0 if sample_count >= threshold else penalty
    score      = ewma * freshness * confidence

Output is sorted by score descending, then endpoint ascending, so the same
stored state and the same `now` always give the same order.
"""

import logging
import math
from typing import List, Optional

from ipranker.errors import PartitionUnavailable, StoreUnavailable
from ipranker.models import EndpointStat, RankedResult
from ipranker.ranking_config import RankingConfig
from ipranker.state_store import StateStore, partition_prefix

logger = logging.getLogger(__name__)


def score_endpoint(stat: EndpointStat, now: int, config: RankingConfig) -> float:
    """Freshness- and confidence-weighted score of one endpoint at time now (epoch ms)"""
    age_seconds = max(0.0, (now - stat.last_observed_at) / 1000)
    freshness = math.exp(-age_seconds / config.tau_seconds)
    if stat.sample_count >= config.confidence_threshold:
        confidence = 1.0
    else:
        confidence = config.low_confidence_penalty
    return stat.ewma * freshness * confidence


def rank_stats(stats: List[EndpointStat], now: int, limit: int,
               config: RankingConfig) -> List[RankedResult]:
    """Score, sort and truncate a set of endpoint records"""
    results = [
        RankedResult(
            endpoint=stat.endpoint,
            score=score_endpoint(stat, now, config),
            ewma=stat.ewma,
            last_observed_at=stat.last_observed_at,
        )
        for stat in stats
        if stat.has_data
    ]
    results.sort(key=lambda r: (-r.score, r.endpoint))
    return results[:limit]


class RankingEngine:
    """Read-only scan over a partition's endpoint statistics"""

    def __init__(self, store: StateStore, config: RankingConfig):
        self.store = store
        self.config = config

    async def load_stats(self, partition: str) -> List[EndpointStat]:
        stats = []
        try:
            async for _key, value in self.store.list_by_prefix(partition_prefix(partition)):
                stats.append(EndpointStat.from_dict(value))
        except StoreUnavailable as e:
            raise PartitionUnavailable(partition, str(e)) from e
        return stats

    async def compute_top(self, partition: str, now: int,
                          limit: Optional[int] = None) -> List[RankedResult]:
        """
        Compute the current ranking for a partition.

        Args:
            partition: Partition to scan
            now: Reference time, epoch ms
            limit: Maximum entries to return (defaults to config.default_limit)

        Raises:
            ValueError: if limit is below 1
            PartitionUnavailable: if the state store fails
        """
        if limit is None:
            limit = self.config.default_limit
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        stats = await self.load_stats(partition)
        top = rank_stats(stats, now, limit, self.config)
        logger.debug(f"[{partition}] ranked {len(stats)} endpoints, returning {len(top)}")
        return top
