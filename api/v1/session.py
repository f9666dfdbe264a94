from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.schemas.session import ActivityRequest, SessionResponse, UnlockRequest, UnlockResponse
from app.services.runs_service import RunsService, get_runs_service
from session.idle import record_activity
from workflow.runner import unlock_ttl

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session", tags=["session"])


def _session_response(service: RunsService) -> SessionResponse:
    snap = service.session.snapshot()
    return SessionResponse(
        address=snap.address,
        unlocked=snap.unlocked,
        remainingSeconds=snap.remaining_seconds,
    )


@router.get("", response_model=SessionResponse)
def get_session_endpoint(service: RunsService = Depends(get_runs_service)) -> SessionResponse:
    return _session_response(service)


@router.post("/unlock", response_model=UnlockResponse)
async def unlock_endpoint(
    payload: UnlockRequest,
    service: RunsService = Depends(get_runs_service),
) -> UnlockResponse:
    ttl = payload.ttlSeconds or unlock_ttl(service.chain, service.settings)
    try:
        service.session.unlock(payload.address, payload.password, ttl)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    resumed = await service.resume_pending_runs()
    if resumed:
        logger.info("Unlock resumed runs: %s", resumed)
    return UnlockResponse(**_session_response(service).model_dump(), resumedRuns=resumed)


@router.post("/lock", response_model=SessionResponse)
def lock_endpoint(service: RunsService = Depends(get_runs_service)) -> SessionResponse:
    service.session.lock()
    return _session_response(service)


@router.post("/activity")
def activity_endpoint(payload: ActivityRequest):
    return {"ok": True, "renewed": record_activity(payload.kind)}
