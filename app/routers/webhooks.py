"""
Webhook router - inbound call events from voice providers.

Always answers HTTP 200; the body says what happened.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.core.config import Settings
from app.core.dependencies import get_app_settings, get_ingestor
from app.services.event_ingestor import EventIngestor

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "X-Vapi-Signature"


@router.post("/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    ingestor: EventIngestor = Depends(get_ingestor),
    settings: Settings = Depends(get_app_settings),
):
    body = await request.body()
    ack = await ingestor.handle_webhook(
        provider,
        body,
        host_header=request.headers.get("host"),
        explicit_tenant_id=request.headers.get(settings.TENANT_OVERRIDE_HEADER),
        signature=request.headers.get(SIGNATURE_HEADER),
    )
    return JSONResponse(status_code=200, content=ack.to_response())
