"""
Ranking Configuration
=====================

Tunable constants for the aggregation and ranking engine. Every component
receives a RankingConfig at construction so tests can swap values freely.
"""

import os
from dataclasses import dataclass, field
from typing import List

OUT_OF_ORDER_POLICIES = ('accept', 'reject')
STORE_BACKENDS = ('sqlite', 'memory')

# Inline candidate pool used when neither CANDIDATES nor CANDIDATES_FILE is set
DEFAULT_CANDIDATES = [
    '104.16.0.0',
    '104.17.0.0',
    '172.64.0.0',
    '188.114.96.0',
]

DEFAULT_HOT_PARTITIONS = ['4134', '4837', '9808', '4538', 'unknown']


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _load_candidates() -> List[str]:
    """Read the candidate pool from CANDIDATES_FILE or CANDIDATES"""
    candidates_file = os.getenv('CANDIDATES_FILE')
    if candidates_file:
        with open(candidates_file, 'r') as f:
            return [line.strip() for line in f if line.strip() and not line.startswith('#')]

    inline = os.getenv('CANDIDATES')
    if inline:
        return _split_list(inline)

    return list(DEFAULT_CANDIDATES)


@dataclass
class RankingConfig:
    """Configuration for EWMA tracking, ranking and the HTTP boundary"""

    # Smoothing and scoring
    alpha: float = 0.3
    tau_seconds: float = 180.0
    confidence_threshold: int = 5
    low_confidence_penalty: float = 0.6

    # Result sizes
    default_limit: int = 100
    max_limit: int = 1000

    # 'accept' keeps last-received-wins, 'reject' drops samples older than the stored one
    out_of_order_policy: str = 'accept'

    # Cache TTLs stay below tau so cached rankings track live ones
    cache_ttl_seconds: float = 90.0
    refresh_ttl_seconds: float = 120.0
    refresh_interval_seconds: float = 60.0
    hot_partitions: List[str] = field(default_factory=lambda: list(DEFAULT_HOT_PARTITIONS))

    # Ingestion and actor housekeeping
    ingest_timeout_seconds: float = 15.0
    handle_idle_seconds: float = 300.0

    # Storage
    store_backend: str = 'sqlite'
    db_path: str = '/var/lib/ipranker/stats.db'

    # HTTP boundary
    partition_header: str = 'X-Client-ASN'
    default_download_bytes: int = 5_000_000
    candidates: List[str] = field(default_factory=lambda: list(DEFAULT_CANDIDATES))

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'RankingConfig':
        """Create configuration from environment variables"""
        return cls(
            alpha=float(os.getenv('RANK_ALPHA', 0.3)),
            tau_seconds=float(os.getenv('RANK_TAU_SECONDS', 180.0)),
            confidence_threshold=int(os.getenv('RANK_CONFIDENCE_THRESHOLD', 5)),
            low_confidence_penalty=float(os.getenv('RANK_LOW_CONFIDENCE_PENALTY', 0.6)),
            default_limit=int(os.getenv('RANK_DEFAULT_LIMIT', 100)),
            max_limit=int(os.getenv('RANK_MAX_LIMIT', 1000)),
            out_of_order_policy=os.getenv('RANK_OUT_OF_ORDER_POLICY', 'accept').lower(),
            cache_ttl_seconds=float(os.getenv('RANK_CACHE_TTL', 90.0)),
            refresh_ttl_seconds=float(os.getenv('RANK_REFRESH_TTL', 120.0)),
            refresh_interval_seconds=float(os.getenv('RANK_REFRESH_INTERVAL', 60.0)),
            hot_partitions=_split_list(os.getenv('HOT_PARTITIONS', ','.join(DEFAULT_HOT_PARTITIONS))),
            ingest_timeout_seconds=float(os.getenv('RANK_INGEST_TIMEOUT', 15.0)),
            handle_idle_seconds=float(os.getenv('RANK_HANDLE_IDLE_SECONDS', 300.0)),
            store_backend=os.getenv('RANK_STORE_BACKEND', 'sqlite').lower(),
            db_path=os.getenv('RANK_DB_PATH', '/var/lib/ipranker/stats.db'),
            partition_header=os.getenv('RANK_PARTITION_HEADER', 'X-Client-ASN'),
            default_download_bytes=int(os.getenv('DEFAULT_BYTES', 5_000_000)),
            candidates=_load_candidates(),
            log_level=os.getenv('RANK_LOG_LEVEL', 'INFO'),
        )

    def validate(self) -> bool:
        """Validate configuration parameters"""
        if not 0.0 < self.alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {self.alpha}")

        if self.tau_seconds <= 0:
            raise ValueError(f"tau_seconds must be positive, got {self.tau_seconds}")

        if self.confidence_threshold < 1:
            raise ValueError("confidence_threshold must be at least 1")

        if not 0.0 <= self.low_confidence_penalty <= 1.0:
            raise ValueError(f"low_confidence_penalty must be in [0, 1], got {self.low_confidence_penalty}")

        if self.default_limit < 1 or self.max_limit < self.default_limit:
            raise ValueError("default_limit must be >= 1 and not above max_limit")

        if self.out_of_order_policy not in OUT_OF_ORDER_POLICIES:
            raise ValueError(f"Unknown out_of_order_policy: {self.out_of_order_policy}")

        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(f"Unknown store_backend: {self.store_backend}")

        for name in ('cache_ttl_seconds', 'refresh_ttl_seconds'):
            ttl = getattr(self, name)
            if ttl <= 0 or ttl >= self.tau_seconds:
                raise ValueError(f"{name} must be positive and below tau_seconds ({self.tau_seconds})")

        if self.refresh_interval_seconds <= 0:
            raise ValueError("refresh_interval_seconds must be positive")

        if self.ingest_timeout_seconds <= 0:
            raise ValueError("ingest_timeout_seconds must be positive")

        if not self.partition_header:
            raise ValueError("partition_header cannot be empty")

        return True


# Global configuration instance
ranking_config = RankingConfig.from_env()
ranking_config.validate()
