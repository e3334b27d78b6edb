"""
EWMA Tracker
============

Folds throughput samples into a per-endpoint exponentially weighted moving
average. The first sample seeds the estimate directly, later samples are
blended with weight alpha.

The tracker performs a read-modify-write against the state store and is
not safe to call concurrently for the same key. PartitionHandle serializes
all calls for a partition.
"""

import logging
import math

from ipranker.errors import InvalidSample, PartitionUnavailable, StoreUnavailable
from ipranker.models import EndpointStat
from ipranker.ranking_config import RankingConfig
from ipranker.state_store import StateStore, stat_key

logger = logging.getLogger(__name__)


def throughput_mbps(bytes_transferred: float, duration_ms: float) -> float:
    """
    Convert a timed transfer into megabits per second.

    Raises:
        InvalidSample: for non-positive duration, negative byte count or a non-finite result
    """
    try:
        if not math.isfinite(duration_ms) or duration_ms <= 0:
            raise InvalidSample(f"Duration must be positive, got {duration_ms} ms")
        if not math.isfinite(bytes_transferred) or bytes_transferred < 0:
            raise InvalidSample(f"Byte count must be non-negative, got {bytes_transferred}")
        value = (bytes_transferred * 8) / (duration_ms / 1000) / 1_000_000
    except OverflowError:
        raise InvalidSample(f"Sample values out of range: {bytes_transferred} bytes in {duration_ms} ms")

    if not math.isfinite(value):
        raise InvalidSample(f"Throughput is not finite for {bytes_transferred} bytes in {duration_ms} ms")
    return value


class EWMATracker:
    """Maintains smoothed throughput per (partition, endpoint)"""

    def __init__(self, store: StateStore, config: RankingConfig):
        self.store = store
        self.config = config

    def blend(self, prev: EndpointStat, throughput: float) -> float:
        """New EWMA value for prev after observing throughput"""
        if prev.sample_count == 0 or prev.ewma is None:
            return throughput
        alpha = self.config.alpha
        return alpha * throughput + (1 - alpha) * prev.ewma

    async def load(self, partition: str, endpoint: str) -> EndpointStat:
        """Stored record for the endpoint, or an empty one"""
        try:
            data = await self.store.get(stat_key(partition, endpoint))
        except StoreUnavailable as e:
            raise PartitionUnavailable(partition, str(e)) from e
        if data is None:
            return EndpointStat(endpoint=endpoint)
        return EndpointStat.from_dict(data)

    async def update(self, partition: str, endpoint: str, throughput_sample: float,
                     observed_at: int) -> EndpointStat:
        """
        Fold one throughput observation into the endpoint's state.

        Args:
            partition: Partition owning the endpoint
            endpoint: Endpoint identifier
            throughput_sample: Validated throughput in Mbps
            observed_at: Sample timestamp, epoch ms

        Returns:
            The updated, persisted EndpointStat

        Raises:
            InvalidSample: if the sample is not finite and non-negative, or is
                older than the stored one under the 'reject' policy
            PartitionUnavailable: if the state store fails
        """
        if not isinstance(throughput_sample, (int, float)) or not math.isfinite(throughput_sample) \
                or throughput_sample < 0:
            raise InvalidSample(f"Throughput must be finite and non-negative, got {throughput_sample}")

        prev = await self.load(partition, endpoint)

        if (self.config.out_of_order_policy == 'reject' and prev.sample_count > 0
                and observed_at < prev.last_observed_at):
            logger.warning(f"Rejecting out-of-order sample for {endpoint} in {partition}: "
                           f"{observed_at} < {prev.last_observed_at}")
            raise InvalidSample(
                f"Sample observed at {observed_at} is older than stored {prev.last_observed_at}"
            )

        updated = EndpointStat(
            endpoint=endpoint,
            ewma=self.blend(prev, float(throughput_sample)),
            sample_count=prev.sample_count + 1,
            last_observed_at=observed_at,
        )

        try:
            await self.store.put(stat_key(partition, endpoint), updated.to_dict())
        except StoreUnavailable as e:
            raise PartitionUnavailable(partition, str(e)) from e

        logger.debug(f"[{partition}] {endpoint}: {throughput_sample:.2f} Mbps -> "
                     f"ewma {updated.ewma:.2f} (n={updated.sample_count})")
        return updated
