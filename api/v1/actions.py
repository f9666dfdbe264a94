from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.schemas.runs import ActionSummary
from app.services.runs_service import RunsService, get_runs_service

router = APIRouter(prefix="/actions", tags=["actions"])


@router.get("", response_model=list[ActionSummary])
def list_actions(
    quick: bool = Query(False, description="Only the quick-action selection"),
    service: RunsService = Depends(get_runs_service),
) -> list[ActionSummary]:
    return [
        ActionSummary(id=a.id, label=a.display_label, flow=a.flow, icon=a.icon, tags=a.tags)
        for a in service.list_actions(quick=quick)
    ]
