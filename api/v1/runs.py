from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.schemas.runs import FormPatchRequest, RunCreateRequest, RunView
from app.services.runs_service import RunNotFoundError, RunsService, get_runs_service
from chain.rpc import RPCError
from ds.core import DsResolutionError, DsResponseError
from manifest.loader import ActionNotFoundError
from workflow.runner import ActionRunner
from workflow.stages import InvalidStageTransition

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


def _runner(service: RunsService, run_id: str) -> ActionRunner:
    try:
        return service.get_run(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")


def _view(runner: ActionRunner) -> RunView:
    return RunView(**runner.view())


@router.post("", response_model=RunView)
async def create_run_endpoint(
    payload: RunCreateRequest,
    service: RunsService = Depends(get_runs_service),
) -> RunView:
    try:
        runner = await service.open_run(
            payload.actionId,
            prefilled=payload.prefilled,
            account=payload.account,
        )
    except ActionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Action not found: {payload.actionId}")
    except (RPCError, DsResolutionError, DsResponseError) as e:
        logger.warning("Opening %s failed: %s", payload.actionId, e)
        raise HTTPException(status_code=502, detail=str(e))
    return _view(runner)


@router.get("/{run_id}", response_model=RunView)
def get_run_endpoint(run_id: str, service: RunsService = Depends(get_runs_service)) -> RunView:
    return _view(_runner(service, run_id))


@router.post("/{run_id}/form", response_model=RunView)
async def patch_form_endpoint(
    run_id: str,
    payload: FormPatchRequest,
    service: RunsService = Depends(get_runs_service),
) -> RunView:
    runner = _runner(service, run_id)
    await runner.update_form(payload.values)
    return _view(runner)


@router.post("/{run_id}/continue", response_model=RunView)
async def continue_endpoint(run_id: str, service: RunsService = Depends(get_runs_service)) -> RunView:
    runner = _runner(service, run_id)
    try:
        await runner.drain()
        await runner.continue_()
    except InvalidStageTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _view(runner)


@router.post("/{run_id}/back", response_model=RunView)
def back_endpoint(run_id: str, service: RunsService = Depends(get_runs_service)) -> RunView:
    runner = _runner(service, run_id)
    try:
        runner.back()
    except InvalidStageTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _view(runner)


@router.post("/{run_id}/confirm", response_model=RunView)
async def confirm_endpoint(run_id: str, service: RunsService = Depends(get_runs_service)) -> RunView:
    runner = _runner(service, run_id)
    try:
        await runner.confirm()
    except InvalidStageTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _view(runner)


@router.post("/{run_id}/done", response_model=RunView)
def done_endpoint(run_id: str, service: RunsService = Depends(get_runs_service)) -> RunView:
    runner = _runner(service, run_id)
    try:
        runner.done()
    except InvalidStageTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _view(runner)


@router.delete("/{run_id}")
def discard_run_endpoint(run_id: str, service: RunsService = Depends(get_runs_service)):
    _runner(service, run_id)
    service.discard(run_id)
    return {"ok": True, "runId": run_id}
