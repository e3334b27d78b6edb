import pytest

from ipranker.ranking_config import DEFAULT_CANDIDATES, RankingConfig


def test_defaults_are_valid():
    config = RankingConfig()

    assert config.validate()
    assert config.alpha == 0.3
    assert config.tau_seconds == 180.0
    assert config.confidence_threshold == 5
    assert config.low_confidence_penalty == 0.6


@pytest.mark.parametrize("overrides", [
    {'alpha': 0.0},
    {'alpha': 1.5},
    {'tau_seconds': 0},
    {'confidence_threshold': 0},
    {'low_confidence_penalty': 1.2},
    {'default_limit': 0},
    {'default_limit': 50, 'max_limit': 10},
    {'out_of_order_policy': 'newest'},
    {'store_backend': 'redis'},
    {'cache_ttl_seconds': 180.0},
    {'refresh_ttl_seconds': 0},
    {'refresh_interval_seconds': 0},
    {'ingest_timeout_seconds': 0},
    {'partition_header': ''},
])
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValueError):
        RankingConfig(**overrides).validate()


def test_from_env(monkeypatch):
    monkeypatch.setenv('RANK_ALPHA', '0.5')
    monkeypatch.setenv('RANK_OUT_OF_ORDER_POLICY', 'REJECT')
    monkeypatch.setenv('HOT_PARTITIONS', '4134, 4837,,')
    monkeypatch.setenv('RANK_STORE_BACKEND', 'memory')
    monkeypatch.setenv('CANDIDATES', '192.0.2.1,192.0.2.2')
    monkeypatch.delenv('CANDIDATES_FILE', raising=False)

    config = RankingConfig.from_env()

    assert config.alpha == 0.5
    assert config.out_of_order_policy == 'reject'
    assert config.hot_partitions == ['4134', '4837']
    assert config.store_backend == 'memory'
    assert config.candidates == ['192.0.2.1', '192.0.2.2']


def test_candidates_file(monkeypatch, tmp_path):
    path = tmp_path / "candidates.txt"
    path.write_text("# edge pool\n192.0.2.1\n\n192.0.2.9\n")
    monkeypatch.setenv('CANDIDATES_FILE', str(path))

    assert RankingConfig.from_env().candidates == ['192.0.2.1', '192.0.2.9']


def test_default_candidates(monkeypatch):
    monkeypatch.delenv('CANDIDATES_FILE', raising=False)
    monkeypatch.delenv('CANDIDATES', raising=False)

    assert RankingConfig.from_env().candidates == DEFAULT_CANDIDATES
