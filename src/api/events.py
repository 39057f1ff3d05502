"""
Dispatcher trigger - POST /process-events runs one dispatch cycle.

Meant for an external scheduler (cron, platform scheduler) when the
in-process dispatcher loop is disabled.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.api.deps import get_services, require_service_token
from src.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter(tags=["events"], dependencies=[Depends(require_service_token)])


@router.post("/process-events")
async def process_events(services: Services = Depends(get_services)):
    try:
        summary = await services.dispatcher.run()
    except Exception as e:
        logger.error("Dispatch run failed: %s", str(e))
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return {"success": True, "summary": summary.to_dict()}
