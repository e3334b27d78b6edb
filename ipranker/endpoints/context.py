"""
Request context helpers shared by the endpoint modules.

Service objects live on app.state and are created in main.py's lifespan.
"""

from fastapi import Request

from ipranker.aggregation_service import AggregationService
from ipranker.partition_router import PartitionRouter
from ipranker.rate_limiter import RateLimiter
from ipranker.ranking_config import RankingConfig


def get_config(request: Request) -> RankingConfig:
    return request.app.state.config


def get_service(request: Request) -> AggregationService:
    return request.app.state.service


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_partition_key(request: Request) -> str:
    """
    Network-origin partition for a request.

    Taken from the header set by the fronting proxy (X-Client-ASN by
    default), never from the request body.
    """
    config = get_config(request)
    return PartitionRouter.normalize_key(request.headers.get(config.partition_header))
