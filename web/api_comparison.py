"""
Comparison endpoints.

ComparisonError and GitError raised by the orchestrator are turned into
400 responses by the app-level handlers in ``web/__init__.py``.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

import web.state as _state

logger = logging.getLogger(__name__)

router = APIRouter()


class RunRequest(BaseModel):
    modelId: str
    modelLabel: str = ""
    modelProvider: str
    providerLabel: str = ""
    prompt: Optional[str] = None


class CompleteRequest(BaseModel):
    success: bool
    duration: Optional[float] = None
    inputTokens: Optional[int] = None
    outputTokens: Optional[int] = None


@router.get("/api/comparison/runs")
async def api_comparison_state():
    state = _state.comparison.state()
    if state is None:
        return {"phase": None}
    return state.to_dict()


@router.post("/api/comparison/runs")
async def api_comparison_create(body: RunRequest):
    orchestrator = _state.comparison
    if orchestrator.state() is None:
        state = orchestrator.init(
            body.prompt or "", body.modelId, body.modelLabel, body.modelProvider, body.providerLabel,
        )
        run = state.active_run
    else:
        state, run = orchestrator.create_run(
            body.modelId, body.modelLabel, body.modelProvider, body.providerLabel, prompt=body.prompt,
        )
    return {"success": True, "run": run.to_dict(), "state": state.to_dict()}


@router.post("/api/comparison/runs/{run_id}/switch")
async def api_comparison_switch(run_id: str):
    state = _state.comparison.switch_run(run_id)
    return {"success": True, "state": state.to_dict()}


@router.post("/api/comparison/runs/{run_id}/select")
async def api_comparison_select(run_id: str):
    warnings = _state.comparison.select_run(run_id)
    return {"success": True, "warnings": warnings}


@router.post("/api/comparison/runs/{run_id}/complete")
async def api_comparison_complete(run_id: str, body: CompleteRequest):
    state = _state.comparison.mark_complete(
        run_id,
        body.success,
        duration=body.duration,
        input_tokens=body.inputTokens,
        output_tokens=body.outputTokens,
    )
    return {"success": True, "state": state.to_dict()}


@router.delete("/api/comparison/runs/{run_id}")
async def api_comparison_delete(run_id: str):
    state = _state.comparison.delete_run(run_id)
    return {"success": True, "state": state.to_dict()}


@router.post("/api/comparison/abort")
async def api_comparison_abort():
    warnings = _state.comparison.abort()
    return {"success": True, "warnings": warnings}
