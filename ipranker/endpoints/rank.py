"""
Ranking Endpoint
================

Serves the top endpoints for the caller's network origin.
"""

from typing import Optional
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from ipranker.endpoints.context import get_partition_key, get_service

router = APIRouter()

NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
}


@router.get("/api/rank")
async def get_ranking(request: Request, limit: Optional[int] = Query(None)):
    """
    Ranked endpoint list for the request's partition.

    A ranking that could not be produced at all is a 503 with an explicit
    error, never an empty 200.
    """
    partition = get_partition_key(request)
    response = await get_service(request).rank(partition, limit)

    status_code = 200 if response.ok else 503
    return JSONResponse(response.to_dict(), status_code=status_code, headers=NO_STORE_HEADERS)
