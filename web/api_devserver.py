"""Dev-server control endpoints."""

from fastapi import APIRouter

import web.state as _state

router = APIRouter()


@router.post("/api/dev-server/restart")
async def api_devserver_restart():
    if not _state.manage_dev_server:
        return {"success": False, "message": "Dev server is not managed by this process."}
    return await _state.devserver.restart()


@router.get("/api/dev-server/status")
async def api_devserver_status():
    return _state.devserver.status()
