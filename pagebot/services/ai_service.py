import re
from dataclasses import dataclass, field
from typing import Optional, Protocol, Union

import httpx

from pagebot.config import settings
from pagebot.logging_config import get_logger
from pagebot.services.conversation_service import ConversationLog
from pagebot.services.image_service import (
    MISMATCH,
    RECEIPT_CONFIRM_MIN_CONFIDENCE,
    VERIFIED,
    ImageContext,
)
from pagebot.services.llm import LLMProvider, OpenAIProvider
from pagebot.services.media_service import extract_media_urls
from pagebot.services.token_service import BotSettingsCache

logger = get_logger("ai_service")

MAX_HISTORY_MESSAGES = 10
MAX_FRAGMENTS = 3

TEXT_FALLBACK_REPLY = "Pasensya na po, nagkaproblema kami sa pagsagot. Paki-ulit po ang message niyo. 🙏"
IMAGE_FALLBACK_REPLY = "Nakita ko po ang image niyo. May tanong ba kayo tungkol dito? 😊"
EMPTY_REPLY_FALLBACK = "Pasensya na po, may technical issue. Pwede po ba ulitin ang tanong niyo?"

_llm_provider: Optional[OpenAIProvider] = None


def get_llm_provider(http_client: Optional[httpx.AsyncClient] = None) -> Optional[OpenAIProvider]:
    """Get or create the shared LLM provider; None without an API key.

    The provider is rebuilt when a different HTTP client is passed in.
    """
    global _llm_provider
    if not settings.openai_api_key:
        return None
    if _llm_provider is None or (http_client is not None and _llm_provider.http_client is not http_client):
        _llm_provider = OpenAIProvider(
            api_key=settings.openai_api_key,
            default_model=settings.openai_model,
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
        )
    return _llm_provider


@dataclass
class BotReply:
    messages: list[str] = field(default_factory=list)
    media_urls: list[str] = field(default_factory=list)

    @classmethod
    def coerce(cls, value: Union["BotReply", str, list, dict, None]) -> "BotReply":
        """Accept the older string / list-of-strings reply shapes too."""
        if isinstance(value, BotReply):
            return value
        if value is None:
            return cls()
        if isinstance(value, str):
            return cls(messages=[value])
        if isinstance(value, dict):
            messages = value.get("messages") or []
            if isinstance(messages, str):
                messages = [messages]
            media = value.get("media_urls") or value.get("mediaUrls") or []
            return cls(messages=[str(m) for m in messages], media_urls=list(media))
        return cls(messages=[str(m) for m in value])

    @classmethod
    def from_text(cls, text: str, max_fragments: int = MAX_FRAGMENTS) -> "BotReply":
        """Split a model reply on blank lines and lift out any media links."""
        media_urls = extract_media_urls(text)
        parts = [part.strip() for part in re.split(r"\n\s*\n", text or "") if part.strip()]
        if len(parts) > max_fragments:
            parts = parts[: max_fragments - 1] + ["\n\n".join(parts[max_fragments - 1 :])]
        return cls(messages=parts, media_urls=media_urls)


class AIResponder(Protocol):
    async def generate(
        self, message: str, sender_id: str, image_context: Optional[ImageContext] = None
    ) -> BotReply: ...


def describe_image_context(image_context: ImageContext) -> str:
    confidence = round(image_context.confidence * 100)
    lines = ["IMAGE ANALYSIS (Customer sent an image):"]

    if image_context.is_receipt and image_context.confidence >= RECEIPT_CONFIRM_MIN_CONFIDENCE:
        lines.append(f"- This appears to be a RECEIPT/PROOF OF PAYMENT ({confidence}% confidence)")
        for label, value in (
            ("Details", image_context.details),
            ("Amount shown", image_context.extracted_amount),
            ("Date", image_context.extracted_date),
            ("Receiver Name", image_context.receiver_name),
            ("Receiver Number", image_context.receiver_number),
            ("Platform", image_context.payment_platform),
        ):
            if value:
                lines.append(f"- {label}: {value}")

        if image_context.verification_status == VERIFIED:
            lines.append(f"PAYMENT VERIFIED: {image_context.verification_details}")
            lines.append("INSTRUCTION: Thank the customer warmly and confirm the payment matches our records.")
        elif image_context.verification_status == MISMATCH:
            lines.append(f"PAYMENT MISMATCH: {image_context.verification_details}")
            lines.append(
                "INSTRUCTION: Politely say the details don't match our records and ask them to double-check "
                "the account they sent to."
            )
        else:
            lines.append("INSTRUCTION: Thank the customer for the payment proof and confirm you received it.")
    elif image_context.is_receipt:
        lines.append(f"- This might be a receipt but confidence is low ({confidence}%)")
        if image_context.details:
            lines.append(f"- What I see: {image_context.details}")
        lines.append("INSTRUCTION: Ask if this is their payment proof; ask for a clearer photo if needed.")
    else:
        lines.append(f"- This does NOT appear to be a receipt ({confidence}% confidence)")
        if image_context.details:
            lines.append(f"- What I see: {image_context.details}")
        lines.append("INSTRUCTION: Respond naturally about the image.")

    return "\n".join(lines)


class LLMResponder:
    """Default responder: one chat completion over the recent chat log."""

    def __init__(
        self,
        llm: Optional[LLMProvider],
        conversation_log: Optional[ConversationLog] = None,
        settings_cache: Optional[BotSettingsCache] = None,
    ):
        self.llm = llm
        self.conversation_log = conversation_log or ConversationLog()
        self.settings_cache = settings_cache or BotSettingsCache()

    async def generate(
        self, message: str, sender_id: str, image_context: Optional[ImageContext] = None
    ) -> BotReply:
        if self.llm is None:
            raise RuntimeError("No LLM provider configured")

        config = await self.settings_cache.get()
        history = await self.conversation_log.recent(sender_id, limit=MAX_HISTORY_MESSAGES)
        await self.conversation_log.append(sender_id, "user", message)

        system_prompt = (
            f"You are {config.bot_name}, a friendly Filipino salesperson. Your style: {config.bot_tone}.\n\n"
            "STYLE: Use Taglish, keep messages short, use 1-2 emojis max. "
            "Separate distinct messages with a blank line."
        )
        if image_context is not None:
            system_prompt += "\n\n" + describe_image_context(image_context)

        messages = [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": message}]
        response = await self.llm.generate(messages, temperature=0.3, max_tokens=1024)

        reply = BotReply.from_text(response.content)
        if not reply.messages and not reply.media_urls:
            logger.warning("Empty AI reply, using fallback", extra={"context": {"sender_id": sender_id}})
            reply.messages = [EMPTY_REPLY_FALLBACK]
        await self.conversation_log.append(sender_id, "assistant", "\n\n".join(reply.messages))
        logger.info(
            "AI reply generated",
            extra={
                "context": {"sender_id": sender_id, "fragments": len(reply.messages), "media": len(reply.media_urls)}
            },
        )
        return reply
