"""
Sample Report Endpoint
======================

Collectors post one timing sample per request. The partition comes from
the request's network-origin header, never from the body.
"""

import json
import logging
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ipranker.endpoints.context import get_partition_key, get_rate_limiter, get_service
from ipranker.errors import InvalidSample, PartitionUnavailable
from ipranker.rate_limiter import get_client_ip

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/report")
async def report_sample(request: Request):
    """
    Fold a sample into the reporter's partition.

    Returns 400 for invalid samples and 503 when the partition's store
    cannot be reached, so the collector knows to retry.
    """
    get_rate_limiter(request).check_report_limit(get_client_ip(request))

    partition = get_partition_key(request)
    service = get_service(request)

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse({
            "accepted": False,
            "error": "invalid_sample",
            "detail": "Request body must be JSON",
        }, status_code=400)

    try:
        result = await service.report(partition, payload)
    except InvalidSample as e:
        return JSONResponse({
            "accepted": False,
            "error": "invalid_sample",
            "detail": str(e),
        }, status_code=400)
    except PartitionUnavailable as e:
        return JSONResponse({
            "accepted": False,
            "error": "partition_unavailable",
            "detail": str(e),
        }, status_code=503)

    return JSONResponse(result.to_dict())
