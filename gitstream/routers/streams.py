from __future__ import annotations

"""
Streams Router

Endpoints:
  - GET  /streams/project/{project_id}          : revenue totals, session id, tier stats
  - GET  /streams/project/{project_id}/preview  : allocations for pending revenue (no network)
  - GET  /streams/project/{project_id}/revenue  : recent revenue events, newest first
  - POST /streams/project/{project_id}/create   : allocate + open a ClearNode session
  - GET  /streams/status                        : ClearNode connection health
  - GET  /streams/balance                       : ledger balance of the session asset

Authentication and project-ownership checks live in the surrounding API.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from ..logging import get_logger
from ..services.distribution import DistributionService

log = get_logger(__name__)
router = APIRouter(prefix="/streams", tags=["streams"])


def get_service(request: Request) -> DistributionService:
    return request.app.state.distribution


@router.get("/project/{project_id}", summary="Stream status for a project")
async def get_project_stream(project_id: str, svc: DistributionService = Depends(get_service)) -> Dict[str, Any]:
    return await svc.project_status(project_id)


@router.get("/project/{project_id}/preview", summary="Preview tier allocations for pending revenue")
async def preview_project_stream(project_id: str, svc: DistributionService = Depends(get_service)) -> Dict[str, Any]:
    plan = await svc.preview(project_id)
    return plan.to_dict()


@router.get("/project/{project_id}/revenue", summary="Revenue history for a project")
async def get_project_revenue(
    project_id: str,
    limit: int = Query(default=50, ge=1, description="At most 100 events are returned"),
    svc: DistributionService = Depends(get_service),
) -> Dict[str, Any]:
    return await svc.revenue_history(project_id, limit)


@router.post("/project/{project_id}/create", summary="Distribute pending revenue through a ClearNode session")
async def create_project_stream(project_id: str, svc: DistributionService = Depends(get_service)) -> Dict[str, Any]:
    log.debug("create_stream_requested", project_id=project_id)
    result = await svc.create_stream(project_id)
    return result.to_dict()


@router.get("/status", summary="ClearNode connection status")
async def get_stream_status(svc: DistributionService = Depends(get_service)) -> Dict[str, Any]:
    return await svc.connection_status()


@router.get("/balance", summary="Ledger balance of the session asset")
async def get_stream_balance(
    address: Optional[str] = Query(default=None, description="Defaults to the operator wallet"),
    svc: DistributionService = Depends(get_service),
) -> Dict[str, str]:
    return {"balance": await svc.session_balance(address)}
