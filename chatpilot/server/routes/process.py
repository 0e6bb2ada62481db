"""Turn processing and health routes."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ...errors import ChatPilotError
from ..app import require_app, verify_api_key
from ..models import ProcessRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/ai-agent-process", dependencies=[Depends(verify_api_key)])
async def process(req: ProcessRequest):
    """
    Run one turn for an inbound batch.

    200 with ``success: true`` on a reply, 200 with ``skip: true`` when the
    AI stays silent, 400 on missing ids, 500 on a failed generation.
    """
    app = require_app()
    try:
        result = await app.process(req.to_payload())
    except ChatPilotError as e:
        logger.error(f"Turn failed for conversation {req.conversationId}: {e}")
        return JSONResponse(
            status_code=e.status_code, content={"success": False, "error": str(e)},
        )
    except Exception as e:
        logger.error(f"Unexpected error for conversation {req.conversationId}: {e}", exc_info=True)
        return JSONResponse(
            status_code=500, content={"success": False, "error": str(e) or "Unknown error"},
        )
    return result.to_dict()


@router.get("/health")
async def health():
    return {"status": "ok"}
