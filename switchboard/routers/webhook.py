from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from switchboard.config import settings
from switchboard.logging_config import get_logger
from switchboard.runtime import Runtime, get_runtime
from switchboard.schemas.webhook import CloudWebhook, WebhookResponse
from switchboard.services.transport_supervisor import InboundBatch
from switchboard.services.whatsapp_service import parse_cloud_webhook

logger = get_logger("webhook")

WHATSAPP_OBJECT = "whatsapp_business_account"

router = APIRouter()


@router.get("/webhook/whatsapp")
async def verify_webhook(
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge when the token matches."""
    if hub_mode == "subscribe" and hub_verify_token == settings.whatsapp_verify_token:
        logger.info("Webhook verified")
        return PlainTextResponse(hub_challenge or "")
    logger.warning("Webhook verification rejected", extra={"context": {"mode": hub_mode}})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.post("/webhook/whatsapp", response_model=WebhookResponse)
async def receive_webhook(request: Request, runtime: Runtime = Depends(get_runtime)):
    """Queue Cloud API message events for the dispatch loop."""
    try:
        payload = await request.json()
    except ValueError:
        return WebhookResponse(success=False, message="Invalid JSON body")

    try:
        webhook = CloudWebhook.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Webhook payload validation failed", extra={"context": {"error": str(exc)}})
        return WebhookResponse(success=False, message="Invalid webhook payload")

    if webhook.object != WHATSAPP_OBJECT:
        logger.info("Ignoring webhook for another object", extra={"context": {"object": webhook.object}})
        return WebhookResponse(success=True, message="Ignored", accepted=0)

    events = parse_cloud_webhook(webhook)
    if events:
        runtime.supervisor.emit(InboundBatch(events=events))
    logger.info(f"Webhook received: {len(events)} message events")
    return WebhookResponse(success=True, message="Accepted", accepted=len(events))
