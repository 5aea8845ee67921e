import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from pagebot.dependencies import get_pipeline, get_settings_cache
from pagebot.logging_config import get_logger
from pagebot.services.pipeline import MessengerPipeline
from pagebot.services.token_service import BotSettingsCache

logger = get_logger("webhook")

router = APIRouter(prefix="/api", tags=["webhook"])


@router.get("/webhook")
async def verify_webhook(request: Request, settings_cache: BotSettingsCache = Depends(get_settings_cache)):
    """Messenger subscription handshake."""
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge")

    if not mode or not token:
        return PlainTextResponse("Bad Request", status_code=400)

    config = await settings_cache.get()
    if mode == "subscribe" and token == config.facebook_verify_token:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "", status_code=200)

    logger.warning("Webhook verification rejected", extra={"context": {"mode": mode}})
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/webhook")
async def receive_webhook(request: Request, pipeline: MessengerPipeline = Depends(get_pipeline)):
    """Acknowledge a delivery at once; replies are produced in the background."""
    raw = await request.body()
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Webhook body is not JSON: {e}")
        return PlainTextResponse("Internal Server Error", status_code=500)

    if not isinstance(body, dict) or body.get("object") != "page":
        obj = body.get("object") if isinstance(body, dict) else None
        logger.info("Not a page event", extra={"context": {"object": obj}})
        return PlainTextResponse("Not Found", status_code=404)

    routed = pipeline.process_payload(body)
    logger.debug("Webhook delivery routed", extra={"context": {"events": routed}})
    return PlainTextResponse("EVENT_RECEIVED", status_code=200)
