"""
Sidecar — agent server for a local web project.

Run:  sidecar [--port 3001] [--target-port 3000] [--dir /path/to/project]
"""

import logging

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import web.state as _state
from comparison import ComparisonError
from config import app_config
from devserver import DevServerError
from gitrepo import GitError
from web import api_chat, api_comparison, api_confirm, api_devserver, api_undo

logger = logging.getLogger(__name__)

# ============================================================
# FastAPI application
# ============================================================

app = FastAPI(title=app_config.title)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = first.get("msg", "invalid")
    return f"{loc}: {msg}" if loc else msg


@app.exception_handler(RequestValidationError)
async def _on_validation_error(request: Request, exc: RequestValidationError):
    message = _validation_message(exc)
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, message)
    return JSONResponse({"success": False, "error": message}, status_code=400)


@app.exception_handler(ComparisonError)
@app.exception_handler(GitError)
async def _on_comparison_error(request: Request, exc: Exception):
    logger.warning("Comparison request %s failed: %s", request.url.path, exc)
    return JSONResponse({"success": False, "error": str(exc)}, status_code=400)


# ============================================================
# Lifecycle
# ============================================================

@app.on_event("startup")
async def _on_startup():
    if _state.stream is None:
        _state.init_services(_state.project_cwd, _state.target_port, dev_server=_state.manage_dev_server)

    loaded = _state.history.load()
    if loaded:
        logger.info("Startup: restored %d history entries", loaded)

    resumed = _state.comparison.resume()
    if resumed is not None:
        logger.info("Startup: comparison mode active (%s)", resumed.phase)

    if _state.manage_dev_server:
        try:
            await _state.devserver.spawn(_state.target_port, _state.project_cwd)
        except DevServerError as e:
            logger.error("Startup: dev server failed to start: %s", e)


@app.on_event("shutdown")
async def _on_shutdown():
    """Stop the agent and the dev server and persist history before the server exits."""
    if _state.stream is not None:
        _state.stream.abort()
        await _state.stream.wait()
    if _state.devserver is not None:
        await _state.devserver.stop()
    if _state.history is not None:
        _state.history.flush()


# ============================================================
# Include routers from submodules
# ============================================================

app.include_router(api_chat.router)
app.include_router(api_confirm.router)
app.include_router(api_comparison.router)
app.include_router(api_devserver.router)
app.include_router(api_undo.router)
