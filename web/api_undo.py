"""Undo endpoints: revert the file changes of the most recent agent stream."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

import web.state as _state

router = APIRouter()


@router.post("/api/undo")
async def api_undo():
    restored = _state.undo.undo()
    if not restored:
        return JSONResponse({"success": False, "error": "Nothing to undo"}, status_code=400)
    return {"success": True, "restored": restored}


@router.get("/api/undo/diff")
async def api_undo_diff():
    diffs = _state.undo.latest_diffs()
    if not diffs:
        return JSONResponse({"success": False, "error": "No session to diff"}, status_code=400)
    return {"success": True, "diffs": diffs}


@router.get("/api/undo/stack")
async def api_undo_stack():
    return _state.undo.stack()
