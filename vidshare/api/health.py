"""
Name: Health Probes

Responsibilities:
  - /healthz: liveness (the process answers requests)
  - /readyz: readiness (the data store answers a ping), 503 when it does not
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz(request: Request):
    return {"ok": True, "request_id": getattr(request.state, "request_id", None)}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check for the data store.

    Returns:
        ok: True when the store answered
        db: "connected" or "disconnected"
        request_id: Correlation ID for this request
    """
    data_store = getattr(request.app.state, "data_store", None)
    connected = data_store is not None and await data_store.ping()

    return JSONResponse(
        status_code=200 if connected else 503,
        content={
            "ok": connected,
            "db": "connected" if connected else "disconnected",
            "request_id": getattr(request.state, "request_id", None),
        },
    )
