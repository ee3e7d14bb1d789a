"""Health check endpoints for flock.

- /health: Basic health check
- /health/live: Liveness check (is the app running?)
- /health/ready: Readiness check (can the record store be read?)
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from flock import __version__
from flock.api.deps import get_tables
from flock.core.errors import UnavailableError
from flock.store import Table, TableService

router = APIRouter(tags=["health"])


def check_store(tables: TableService) -> Dict[str, Any]:
    """Check that the record store answers a read."""
    start = time.monotonic()
    try:
        tables.list(Table.ROLES)
    except UnavailableError as e:
        return {"status": "unhealthy", "error": str(e)}
    return {
        "status": "healthy",
        "backend": type(tables).__name__,
        "latency_ms": round((time.monotonic() - start) * 1000, 1),
    }


@router.get("/health")
def health_check():
    return {"status": "healthy", "version": __version__}


@router.get("/health/live")
def liveness():
    return {"status": "alive"}


@router.get("/health/ready")
def readiness(tables: TableService = Depends(get_tables)):
    store = check_store(tables)
    body = {"status": "ready" if store["status"] == "healthy" else "not_ready", "store": store}
    if store["status"] != "healthy":
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body
