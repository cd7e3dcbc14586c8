"""Tool confirmation endpoint: the dashboard's approve / reject / allow-all buttons."""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import web.state as _state
from confirmations import AUTO_APPROVE_CATEGORIES

logger = logging.getLogger(__name__)

router = APIRouter()


class ConfirmRequest(BaseModel):
    confirmId: str = Field(..., min_length=1)
    approved: bool
    allowAll: bool = False
    category: Optional[str] = None


@router.post("/api/confirm")
async def api_confirm(body: ConfirmRequest):
    gate = _state.confirmations
    if body.allowAll and body.approved:
        if body.category:
            if body.category not in AUTO_APPROVE_CATEGORIES:
                return JSONResponse(
                    {"success": False, "error": f"Unknown category: {body.category}"}, status_code=400,
                )
            gate.set_auto_approve(body.category, True)
            logger.info("Auto-approving %s for this session", body.category)
        resolved = gate.approve_all()
        return {"success": True, "found": body.confirmId in resolved}

    found = gate.resolve(body.confirmId, body.approved)
    if not found:
        logger.debug("Confirmation %s already settled", body.confirmId)
    return {"success": True, "found": found}
