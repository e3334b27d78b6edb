"""
ipranker HTTP application.

Wires the aggregation core (state store, EWMA tracker, ranking engine,
partition router, result cache) into a FastAPI app and runs the hot
partition refresh loop for the lifetime of the process.
"""

import os
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

import psutil
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from ipranker import __version__
from ipranker.aggregation_service import AggregationService
from ipranker.endpoints.candidates import router as candidates_router
from ipranker.endpoints.download import router as download_router
from ipranker.endpoints.rank import router as rank_router
from ipranker.endpoints.refresh import router as refresh_router
from ipranker.endpoints.report import router as report_router
from ipranker.ewma_tracker import EWMATracker
from ipranker.partition_router import PartitionRouter
from ipranker.rate_limiter import RateLimiter
from ipranker.ranking_config import RankingConfig, ranking_config
from ipranker.ranking_engine import RankingEngine
from ipranker.result_cache import MemoryResultCache, ResultCache
from ipranker.scheduler import RefreshScheduler
from ipranker.state_store import StateStore, create_state_store

logger = logging.getLogger(__name__)


def create_app(config: Optional[RankingConfig] = None,
               store: Optional[StateStore] = None,
               cache: Optional[ResultCache] = None,
               rate_limiter: Optional[RateLimiter] = None,
               run_scheduler: bool = True) -> FastAPI:
    """
    Build the FastAPI app.

    Components are created when the app starts, so importing this module
    never touches the database.
    """
    config = config or ranking_config
    config.validate()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_store = store if store is not None else create_state_store(config.store_backend, config.db_path)
        tracker = EWMATracker(app_store, config)
        engine = RankingEngine(app_store, config)
        router = PartitionRouter(tracker, engine, config)
        service = AggregationService(router, config, cache if cache is not None else MemoryResultCache())
        scheduler = RefreshScheduler(service, config.refresh_interval_seconds)

        app.state.config = config
        app.state.store = app_store
        app.state.router = router
        app.state.service = service
        app.state.scheduler = scheduler
        app.state.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter.from_env()
        app.state.started_at = time.time()

        if run_scheduler:
            scheduler.start()
        logger.info(f"✅ ipranker started (store={config.store_backend}, "
                    f"hot partitions={config.hot_partitions})")

        try:
            yield
        finally:
            await scheduler.stop()
            await router.close()
            app_store.close()
            logger.info("✅ ipranker shutdown complete")

    app = FastAPI(title="ipranker", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(download_router)
    app.include_router(report_router)
    app.include_router(rank_router)
    app.include_router(candidates_router)
    app.include_router(refresh_router)

    @app.get("/")
    async def root():
        return PlainTextResponse("ipranker: ok")

    @app.get("/api/health")
    async def get_health(request: Request):
        """Health check endpoint"""
        process = psutil.Process(os.getpid())
        return JSONResponse({
            "status": "healthy",
            "server": "ipranker",
            "version": __version__,
            "timestamp": int(time.time()),
            "uptime_seconds": round(time.time() - request.app.state.started_at, 1),
            "memory_rss_mb": round(process.memory_info().rss / (1024 * 1024), 1),
        })

    @app.get("/api/stats")
    async def get_stats(request: Request):
        """Router, cache, limiter and scheduler statistics"""
        state = request.app.state
        cache_stats = state.service.cache.get_stats() if hasattr(state.service.cache, "get_stats") else None
        return JSONResponse({
            "ingestion": state.service.get_stats(),
            "partitions": state.router.get_stats(),
            "cache": cache_stats,
            "rate_limiter": state.rate_limiter.get_stats(),
            "scheduler": state.scheduler.get_stats(),
        })

    return app


app = create_app()
