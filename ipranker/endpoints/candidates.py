"""
Candidate pool delivery for collectors.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ipranker.endpoints.context import get_config

router = APIRouter()


@router.get("/api/candidates")
async def get_candidates(request: Request):
    return JSONResponse({"candidates": list(get_config(request).candidates)})
