"""REST API endpoints for the FileMaker bridge.

- GET  /api/v1/filemaker/status  connection, counts, circuit and sync state
- POST /api/v1/filemaker/sync    pull FileMaker property records (full or delta)
- POST /api/v1/filemaker/push    push a submission or communication

Bridge errors map to HTTP status by category: not configured and circuit
open are 503, a running sync is 409, an unknown local id is 404, and any
other FileMaker failure is 502.
"""

from __future__ import annotations

from typing import Any, Literal

import structlog
from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel

from src.portal.filemaker.errors import (
    CircuitOpenError,
    ConfigurationMissing,
    FileMakerError,
)
from src.portal.filemaker.push import PushGateway
from src.portal.filemaker.repository import LocalRecordNotFound, SyncInProgress
from src.portal.filemaker.schemas import ConnectionStatus, Layouts, SyncMode, SyncReport
from src.portal.filemaker.status import check_connection
from src.portal.filemaker.sync import DEFAULT_PAGE_SIZE, SyncReconciler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/filemaker", tags=["filemaker"])

SETUP_HINT = "Set FM_SERVER_URL, FM_DATABASE, FM_USERNAME, FM_PASSWORD"


# ── Request / Response Schemas ───────────────────────────────────────────────


class PushRequest(BaseModel):
    """Request body for pushing one local record to FileMaker."""

    type: Literal["submission", "communication"]
    record_id: str


class PushResponse(BaseModel):
    success: bool = True
    type: str
    portal_id: str
    fm_record_id: str


# ── Dependency Injection Helper ──────────────────────────────────────────────


def _get_bridge(request: Request) -> tuple[Any, Any, Layouts]:
    """Retrieve the FileMaker client, repository and layouts from app.state."""
    client = getattr(request.app.state, "filemaker_client", None)
    repo = getattr(request.app.state, "portal_repository", None)
    if client is None or repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="FileMaker bridge not initialized",
        )
    layouts = getattr(request.app.state, "filemaker_layouts", None) or Layouts()
    return client, repo, layouts


def _to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ConfigurationMissing):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "FileMaker not configured", "hint": SETUP_HINT},
        )
    if isinstance(exc, CircuitOpenError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": str(exc), "category": exc.category.value},
        )
    if isinstance(exc, SyncInProgress):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, LocalRecordNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, FileMakerError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.to_dict())
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/status", response_model=ConnectionStatus)
async def get_status(
    request: Request,
    meta: bool = Query(False, description="Include layout field metadata"),
) -> ConnectionStatus:
    """Report configuration, connectivity and sync state. Always 200."""
    client, repo, layouts = _get_bridge(request)
    return await check_connection(client, repo, layouts, include_meta=meta)


@router.post("/sync", response_model=SyncReport)
async def run_sync(
    request: Request,
    mode: SyncMode = Query(SyncMode.FULL),
    dry_run: bool = Query(False, alias="dryRun"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=1000),
) -> SyncReport:
    """Pull FileMaker property records into the portal store."""
    client, repo, layouts = _get_bridge(request)
    reconciler = SyncReconciler(client, repo, layouts)
    try:
        return await reconciler.sync(limit=limit, dry_run=dry_run, mode=mode)
    except (FileMakerError, SyncInProgress) as exc:
        raise _to_http_error(exc) from exc


@router.post("/push", response_model=PushResponse)
async def push_record(request: Request, body: PushRequest) -> PushResponse:
    """Push one submission or communication to FileMaker."""
    client, repo, layouts = _get_bridge(request)
    if not client.is_configured:
        raise _to_http_error(ConfigurationMissing())

    gateway = PushGateway(client, repo, layouts)
    try:
        if body.type == "submission":
            fm_record_id = await gateway.push_submission(body.record_id)
        else:
            fm_record_id = await gateway.push_communication(body.record_id)
    except (FileMakerError, LocalRecordNotFound) as exc:
        logger.error("filemaker.push_failed", type=body.type, error=str(exc))
        raise _to_http_error(exc) from exc

    return PushResponse(type=body.type, portal_id=body.record_id, fm_record_id=fm_record_id)
