"""
Inbound webhook endpoint - POST /webhook-receiver?name=<webhook_name>.

The raw body is handed to the gateway untouched; signatures are computed
over the exact bytes received.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from src.api.deps import get_services
from src.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


@router.post("/webhook-receiver")
async def webhook_receiver(
    request: Request,
    name: Optional[str] = Query(default=None),
    services: Services = Depends(get_services),
):
    body = await request.body()
    result = await services.gateway.handle(
        method=request.method,
        name=name,
        raw_body=body,
        headers=dict(request.headers),
        source_ip=request.client.host if request.client else None,
    )
    return JSONResponse(status_code=result.status_code, content=result.body)
