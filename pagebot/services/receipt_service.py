import asyncio
from enum import Enum
from typing import Optional

from pagebot.config import settings
from pagebot.logging_config import get_logger
from pagebot.services.ai_service import IMAGE_FALLBACK_REPLY, BotReply
from pagebot.services.dispatcher import send_bot_reply
from pagebot.services.image_service import (
    RECEIPT_VERIFY_MIN_CONFIDENCE,
    ImageContext,
    is_confirmed_receipt,
    verify_receipt,
)

logger = get_logger("receipt_service")


class ImageTurnResult(str, Enum):
    SUPPRESSED = "suppressed"
    REPLIED = "replied"
    FALLBACK = "fallback"


def image_user_message(accompanying_text: Optional[str]) -> str:
    if accompanying_text:
        return f'[Customer sent an image with message: "{accompanying_text}"]'
    return "[Customer sent an image]"


class ImageMessageHandler:
    """Handles one image attachment: analyze, verify receipts, reply through the AI."""

    def __init__(
        self,
        facebook,
        takeover_gate,
        analyzer,
        catalog,
        leads,
        responder,
        bookkeeper,
        spawner,
        sleep_func=asyncio.sleep,
        message_delay_seconds: float = settings.message_delay_seconds,
    ):
        self.facebook = facebook
        self.takeover_gate = takeover_gate
        self.analyzer = analyzer
        self.catalog = catalog
        self.leads = leads
        self.responder = responder
        self.bookkeeper = bookkeeper
        self.spawner = spawner
        self._sleep = sleep_func
        self.message_delay_seconds = message_delay_seconds

    async def build_image_context(self, image_url: str) -> ImageContext:
        analysis = await self.analyzer.analyze(image_url)
        if not analysis.ok:
            raise RuntimeError(f"Image analysis failed: {analysis.error}")

        result = analysis.value
        context = ImageContext.from_analysis(result, image_url)

        if result.is_receipt and result.confidence >= RECEIPT_VERIFY_MIN_CONFIDENCE:
            methods = await self.catalog.get_payment_methods()
            context.verification_status, context.verification_details = verify_receipt(result, methods)
            logger.info(
                f"Receipt verification: {context.verification_status}",
                extra={"context": {"details": context.verification_details}},
            )
        return context

    async def handle(
        self,
        sender_id: str,
        image_url: str,
        page_id: Optional[str] = None,
        accompanying_text: Optional[str] = None,
    ) -> ImageTurnResult:
        if await self.takeover_gate.is_active(sender_id):
            return ImageTurnResult.SUPPRESSED

        lead = None
        try:
            await self.facebook.send_typing(sender_id, True, page_id)
            lead = await self.leads.get_or_create_lead(sender_id, page_id)

            context = await self.build_image_context(image_url)

            if lead is not None and is_confirmed_receipt(context):
                await self.leads.move_lead_to_receipt_stage(
                    lead.id, image_url, context.details or "Receipt detected by AI"
                )

            reply = BotReply.coerce(
                await self.responder.generate(image_user_message(accompanying_text), sender_id, context)
            )
            await send_bot_reply(
                self.facebook, sender_id, reply, page_id, self._sleep, self.message_delay_seconds
            )
        except Exception:
            logger.exception("Image handling failed", extra={"context": {"sender_id": sender_id}})
            await self.facebook.send_text(sender_id, IMAGE_FALLBACK_REPLY, page_id)
            return ImageTurnResult.FALLBACK
        finally:
            await self.facebook.send_typing(sender_id, False, page_id)

        if lead is not None:
            self.spawner.spawn(
                self.bookkeeper.after_image_turn(lead, sender_id, accompanying_text), name="lead_bookkeeping"
            )
        return ImageTurnResult.REPLIED
