"""
Chat, stream and history endpoints.

POST /api/chat starts a stream (cancelling any previous one); listeners
attach with GET /api/stream and receive every event from that point on.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

import web.state as _state
from agent.prompts import build_user_content
from config import app_config, get_model_catalog
from project import is_project_fresh, mark_project_ready

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


class SourceFrame(BaseModel):
    source: str
    line: Optional[int] = None


class ConsoleEntry(BaseModel):
    level: str
    message: str
    source: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    sourceTrace: Optional[List[SourceFrame]] = None
    stack: Optional[str] = None
    count: int = 1


class PageContext(BaseModel):
    url: str
    title: str = ""
    routeComponent: Optional[str] = None


class ChatRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    model: Optional[str] = None
    modelProvider: str
    consoleEntries: Optional[List[ConsoleEntry]] = None
    images: Optional[List[str]] = None
    pageContext: Optional[PageContext] = None


class HistoryAppend(BaseModel):
    eventType: str = Field(..., min_length=1)
    data: Any


# ============================================================
# Models / chat
# ============================================================

@router.get("/api/models")
async def api_models():
    return {"providers": get_model_catalog()}


@router.post("/api/chat")
async def api_chat(body: ChatRequest):
    model_id = body.model or app_config.default_model
    content = build_user_content(
        body.prompt,
        console_entries=[e.model_dump() for e in body.consoleEntries or []],
        page_context=body.pageContext.model_dump() if body.pageContext else None,
        images=body.images,
    )
    try:
        await _state.stream.start(content, model_id, body.modelProvider)
    except Exception as e:
        logger.error("Chat setup failed: %s", e)
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)
    return {"success": True}


# ============================================================
# Stream
# ============================================================

@router.get("/api/stream")
async def api_stream(reconnect: Optional[str] = Query(None)):
    events = _state.stream.stream_events(reconnect=reconnect == "1")
    return StreamingResponse(events, media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/api/stream/abort")
async def api_stream_abort():
    _state.stream.abort()
    return {"ok": True}


@router.get("/api/stream/status")
async def api_stream_status():
    return _state.stream.status()


# ============================================================
# History
# ============================================================

@router.get("/api/chat/history")
async def api_history():
    return {"history": _state.history.entries()}


@router.post("/api/chat/history")
async def api_history_append(body: HistoryAppend):
    data = body.data if isinstance(body.data, str) else json.dumps(body.data, ensure_ascii=False)
    _state.history.add(body.eventType, data)
    return {"success": True}


@router.delete("/api/chat/history")
async def api_history_clear():
    _state.history.clear()
    _state.sessions.reset()
    _state.confirmations.reset()
    return {"success": True}


# ============================================================
# Project
# ============================================================

@router.get("/api/project-info")
async def api_project_info() -> Dict[str, Any]:
    return {
        "projectCwd": _state.project_cwd,
        "targetPort": _state.target_port,
        "fresh": is_project_fresh(_state.project_cwd),
        "comparisonPhase": _state.comparison.phase(),
    }


@router.post("/api/project/ready")
async def api_project_ready():
    mark_project_ready(_state.project_cwd)
    return {"success": True}
