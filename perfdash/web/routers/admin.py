from __future__ import annotations
import time

from fastapi import APIRouter, Request

from perfdash.services.audit import LocalLighthouseClient
from perfdash.services.friendly_errors import to_friendly_message

router = APIRouter()


@router.get("/connection")
async def test_connection(request: Request):
    t0 = time.perf_counter()
    status = await request.app.state.store.test_connection()
    return {
        "ok": status.success,
        "reason": status.reason,
        "detail": status.message,
        "message": to_friendly_message(status),
        "latency_ms": int((time.perf_counter() - t0) * 1000),
    }


@router.get("/provider")
async def provider_status(request: Request):
    provider = getattr(request.app.state, "provider", None)
    if provider is None:
        return {"ok": False, "provider": None, "detail": getattr(request.app.state, "provider_error", None)}
    out = {"ok": True, "provider": getattr(provider, "name", type(provider).__name__)}
    if isinstance(provider, LocalLighthouseClient):
        out["ok"] = await provider.health()
    return out
