import asyncio

import pytest

from ipranker.aggregation_service import AggregationService
from ipranker.errors import StoreUnavailable
from ipranker.ewma_tracker import EWMATracker
from ipranker.models import EndpointStat
from ipranker.partition_router import PartitionRouter
from ipranker.ranking_config import RankingConfig
from ipranker.ranking_engine import RankingEngine
from ipranker.result_cache import MemoryResultCache
from ipranker.state_store import MemoryStateStore, stat_key

NOW = 1_700_000_000_000


class YieldingStore(MemoryStateStore):
    """Memory store that suspends on every call, like a networked backend"""

    async def get(self, key):
        await asyncio.sleep(0)
        value = await super().get(key)
        await asyncio.sleep(0)
        return value

    async def put(self, key, value):
        await asyncio.sleep(0)
        await super().put(key, value)


class FailingStore(MemoryStateStore):
    """Memory store that fails for keys containing any of the given markers"""

    def __init__(self, markers=("",)):
        super().__init__()
        self.markers = list(markers)
        self.enabled = True

    def _check(self, key):
        if self.enabled and any(marker in key for marker in self.markers):
            raise StoreUnavailable(f"backend down for {key}")

    async def get(self, key):
        self._check(key)
        return await super().get(key)

    async def put(self, key, value):
        self._check(key)
        await super().put(key, value)

    async def list_by_prefix(self, prefix):
        self._check(prefix)
        async for item in super().list_by_prefix(prefix):
            yield item


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def seed_stat(store, partition, endpoint, ewma, sample_count, last_observed_at):
    stat = EndpointStat(endpoint=endpoint, ewma=ewma, sample_count=sample_count,
                        last_observed_at=last_observed_at)
    await store.put(stat_key(partition, endpoint), stat.to_dict())
    return stat


@pytest.fixture
def config():
    return RankingConfig(store_backend='memory', hot_partitions=['4134', '4837', 'unknown'])


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def tracker(store, config):
    return EWMATracker(store, config)


@pytest.fixture
def engine(store, config):
    return RankingEngine(store, config)


@pytest.fixture
def router(tracker, engine, config):
    return PartitionRouter(tracker, engine, config)


@pytest.fixture
def cache_clock():
    return FakeClock(start=1000.0)


@pytest.fixture
def cache(cache_clock):
    return MemoryResultCache(clock=cache_clock)


@pytest.fixture
def service(router, config, cache):
    return AggregationService(router, config, cache, clock=lambda: NOW)
