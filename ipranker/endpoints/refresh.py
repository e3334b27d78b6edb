"""
Refresh Trigger Endpoint
========================

Lets an external cron hit the same refresh the in-process scheduler runs.
"""

import logging
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.api_route("/cron/refresh", methods=["GET", "POST"])
async def trigger_refresh(request: Request):
    """Refresh all hot partitions now. Partial failures are reported, not raised."""
    report = await request.app.state.scheduler.run_once()
    logger.info(f"Manual refresh: {len(report.refreshed)} refreshed, {len(report.failed)} failed")
    return JSONResponse(report.to_dict())
