"""
Measurement Download Endpoint
=============================

Streams a bounded amount of random data. Collectors fetch it through each
candidate address and time the transfer. Random bytes keep intermediaries
from compressing the stream.
"""

import os
import asyncio
import logging
from typing import Optional
from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from ipranker.endpoints.context import get_config, get_rate_limiter
from ipranker.rate_limiter import get_client_ip

logger = logging.getLogger(__name__)
router = APIRouter()

# Reusable buffer of random data
CHUNK_SIZE = 64 * 1024  # 64KB chunks
random_buffer = os.urandom(CHUNK_SIZE)

MIN_DOWNLOAD_BYTES = 1024
MAX_DOWNLOAD_BYTES = 50_000_000


def bounded_size(requested: Optional[int], default: int) -> int:
    """Clamp a requested stream size to [1 KB, 50 MB]"""
    size = default if requested is None else requested
    return max(MIN_DOWNLOAD_BYTES, min(size, MAX_DOWNLOAD_BYTES))


async def download_generator(request: Request, total_bytes: int, on_finish=None):
    """
    Yield exactly total_bytes of random data.
    Checks for client disconnection between chunks.
    """
    sent = 0
    chunk_count = 0

    try:
        while sent < total_bytes:
            if await request.is_disconnected():
                logger.info(f"Client disconnected after {sent} of {total_bytes} bytes")
                break

            n = min(CHUNK_SIZE, total_bytes - sent)
            yield random_buffer[:n]
            sent += n
            chunk_count += 1

            # Let other requests run between bursts
            if chunk_count % 16 == 0:
                await asyncio.sleep(0)
    finally:
        logger.debug(f"Download stream finished after {chunk_count} chunks ({sent} bytes)")
        if on_finish:
            on_finish()


@router.get("/dl")
async def download_endpoint(request: Request, size: Optional[int] = Query(None, alias="bytes")):
    """
    Stream random data for throughput measurement.
    Protected by a per-IP concurrent stream limit.
    """
    config = get_config(request)
    limiter = get_rate_limiter(request)
    client_ip = get_client_ip(request)
    total_bytes = bounded_size(size, config.default_download_bytes)

    limiter.check_download_limit(client_ip)
    logger.info(f"Starting {total_bytes} byte download stream for {client_ip}")

    return StreamingResponse(
        download_generator(request, total_bytes, lambda: limiter.release_download_connection(client_ip)),
        media_type="application/octet-stream",
        headers={
            "Cache-Control": "no-store",
            "Pragma": "no-cache",
            "Content-Length": str(total_bytes),
        }
    )
