import math

import pytest

from ipranker.errors import PartitionUnavailable
from ipranker.models import EndpointStat
from ipranker.ranking_config import RankingConfig
from ipranker.ranking_engine import RankingEngine, rank_stats, score_endpoint
from ipranker.state_store import stat_key

from tests.conftest import FailingStore, seed_stat

NOW = 1_700_000_000_000


def stat(endpoint, ewma, count=5, age_seconds=0):
    return EndpointStat(endpoint=endpoint, ewma=ewma, sample_count=count,
                        last_observed_at=NOW - int(age_seconds * 1000))


class TestScoring:
    def test_fresh_confident_endpoint_scores_its_ewma(self, config):
        assert score_endpoint(stat("a", 50.0), NOW, config) == pytest.approx(50.0)

    def test_low_confidence_penalty(self, config):
        assert score_endpoint(stat("a", 50.0, count=2), NOW, config) == pytest.approx(30.0)

    def test_freshness_decays_with_age(self, config):
        score = score_endpoint(stat("a", 50.0, age_seconds=180), NOW, config)
        assert score == pytest.approx(50.0 * math.exp(-1))

    def test_three_tau_old_endpoint_is_nearly_forgotten(self, config):
        score = score_endpoint(stat("a", 100.0, age_seconds=3 * config.tau_seconds), NOW, config)
        assert score <= 5.0

    def test_future_timestamp_counts_as_fresh(self, config):
        future = EndpointStat(endpoint="a", ewma=50.0, sample_count=5, last_observed_at=NOW + 60_000)
        assert score_endpoint(future, NOW, config) == pytest.approx(50.0)

    def test_custom_tau(self):
        config = RankingConfig(store_backend='memory', tau_seconds=60.0,
                               cache_ttl_seconds=30.0, refresh_ttl_seconds=45.0)
        score = score_endpoint(stat("a", 10.0, age_seconds=60), NOW, config)
        assert score == pytest.approx(10.0 * math.exp(-1))


class TestRankStats:
    def test_confidence_outweighs_small_throughput_gap(self, config):
        stats = [stat("fast-but-new", 50.0, count=2), stat("steady", 48.0, count=6)]

        top = rank_stats(stats, NOW, 10, config)

        assert [r.endpoint for r in top] == ["steady", "fast-but-new"]
        assert top[0].score == pytest.approx(48.0)
        assert top[1].score == pytest.approx(30.0)

    def test_established_endpoint_beats_faster_newcomer(self, config):
        stats = [stat("newcomer", 80.0, count=2), stat("established", 50.0, count=10)]

        top = rank_stats(stats, NOW, 10, config)

        assert [r.endpoint for r in top] == ["established", "newcomer"]
        assert top[0].score == pytest.approx(50.0)
        assert top[1].score == pytest.approx(48.0)

    def test_equal_scores_break_ties_by_endpoint(self, config):
        stats = [stat("c", 10.0), stat("a", 10.0), stat("b", 10.0)]

        top = rank_stats(stats, NOW, 10, config)

        assert [r.endpoint for r in top] == ["a", "b", "c"]

    def test_limit_truncates(self, config):
        stats = [stat(f"e{i}", float(i)) for i in range(10)]

        top = rank_stats(stats, NOW, 3, config)

        assert [r.endpoint for r in top] == ["e9", "e8", "e7"]

    def test_fewer_endpoints_than_limit(self, config):
        top = rank_stats([stat("a", 1.0)], NOW, 100, config)
        assert len(top) == 1

    def test_records_without_samples_are_skipped(self, config):
        stats = [EndpointStat(endpoint="empty"), stat("a", 1.0)]

        top = rank_stats(stats, NOW, 10, config)

        assert [r.endpoint for r in top] == ["a"]

    def test_result_carries_ewma_and_timestamp(self, config):
        top = rank_stats([stat("a", 12.5, age_seconds=10)], NOW, 1, config)

        assert top[0].ewma == 12.5
        assert top[0].last_observed_at == NOW - 10_000


@pytest.mark.asyncio
class TestRankingEngine:
    async def test_compute_top_reads_only_its_partition(self, engine, store):
        await seed_stat(store, "4134", "1.1.1.1", 40.0, 5, NOW)
        await seed_stat(store, "4134", "2.2.2.2", 20.0, 5, NOW)
        await seed_stat(store, "4837", "3.3.3.3", 90.0, 5, NOW)

        top = await engine.compute_top("4134", NOW, 10)

        assert [r.endpoint for r in top] == ["1.1.1.1", "2.2.2.2"]

    async def test_partition_prefix_does_not_leak(self, engine, store):
        await seed_stat(store, "41", "1.1.1.1", 40.0, 5, NOW)
        await seed_stat(store, "4134", "2.2.2.2", 20.0, 5, NOW)

        top = await engine.compute_top("41", NOW, 10)

        assert [r.endpoint for r in top] == ["1.1.1.1"]

    async def test_empty_partition_returns_empty_list(self, engine):
        assert await engine.compute_top("nobody", NOW, 10) == []

    async def test_default_limit_from_config(self, store):
        engine = RankingEngine(store, RankingConfig(store_backend='memory', default_limit=2))
        for i in range(5):
            await seed_stat(store, "p", f"e{i}", float(i), 5, NOW)

        top = await engine.compute_top("p", NOW)

        assert len(top) == 2

    async def test_deterministic_for_same_state_and_time(self, engine, store):
        for i in range(20):
            await seed_stat(store, "p", f"e{i:02d}", float(i % 4), 3 + i % 4, NOW - i * 1000)

        first = await engine.compute_top("p", NOW, 20)
        second = await engine.compute_top("p", NOW, 20)

        assert first == second

    async def test_zero_sample_records_are_ignored(self, engine, store):
        await store.put(stat_key("p", "ghost"), {'endpoint': "ghost", 'ewma': None,
                                                 'sampleCount': 0, 'lastObservedAt': 0})
        await seed_stat(store, "p", "real", 5.0, 1, NOW)

        top = await engine.compute_top("p", NOW, 10)

        assert [r.endpoint for r in top] == ["real"]

    @pytest.mark.parametrize("limit", [0, -3])
    async def test_limit_below_one_is_rejected(self, engine, limit):
        with pytest.raises(ValueError):
            await engine.compute_top("p", NOW, limit)

    async def test_store_failure_becomes_partition_unavailable(self, config):
        engine = RankingEngine(FailingStore(), config)

        with pytest.raises(PartitionUnavailable):
            await engine.compute_top("4134", NOW, 10)
