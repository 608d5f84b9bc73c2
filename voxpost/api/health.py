"""
Health API.

- GET /healthz: liveness (no dependencies)
- GET /readyz: database connectivity
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from voxpost.core.database import check_connection
from voxpost.core.logging import get_request_id

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    if check_connection():
        return {"status": "ready", "db": {"connected": True}}
    return JSONResponse(
        status_code=503,
        content={"status": "not_ready", "db": {"connected": False}, "request_id": get_request_id()},
    )
