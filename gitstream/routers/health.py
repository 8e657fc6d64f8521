from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from ..version import version

router = APIRouter(tags=["health"])

_PROCESS_START = time.time()


@router.get("/healthz", summary="Liveness probe")
async def healthz(request: Request) -> Dict[str, Any]:
    """Process liveness only; ClearNode health is reported by /streams/status."""
    registry = getattr(request.app.state, "registry", None)
    client = registry.client if registry is not None else None
    return {
        "ok": True,
        "version": version(),
        "time": datetime.now(timezone.utc).isoformat(),
        "uptimeSeconds": round(max(0.0, time.time() - _PROCESS_START), 3),
        "clearnode": client.status().state.value if client is not None else "idle",
    }
