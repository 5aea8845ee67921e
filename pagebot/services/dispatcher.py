import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from pagebot.config import settings
from pagebot.logging_config import get_logger
from pagebot.services.ai_service import TEXT_FALLBACK_REPLY, BotReply
from pagebot.services.intent_service import CatalogIntent, classify_intent
from pagebot.services.media_service import strip_media_links_from_text

logger = get_logger("dispatcher")

PRODUCT_INTRO = "Here are our available products! 🛍️ Click on any item to view more details:"
PROPERTY_INTRO = "Here are our latest properties for you! 🏠 Click to view details:"
PAYMENT_INTRO = "Ito po ang aming payment options! 💳 Pwede po kayong pumili kung saan kayo magbabayad:"
PAYMENT_FOLLOW_UP = (
    "Pag nakapagbayad na po kayo, kindly send the screenshot ng receipt para ma-verify namin. Salamat po! 🙏"
)


class Outcome(str, Enum):
    HANDLED = "handled"
    NOT_APPLICABLE = "not_applicable"
    FAILED = "failed"


class TurnResult(str, Enum):
    SUPPRESSED = "suppressed"
    CARDS = "cards"
    AI_REPLY = "ai_reply"
    FALLBACK = "fallback"


@dataclass
class Turn:
    sender_id: str
    text: str
    page_id: Optional[str] = None
    intent: CatalogIntent = CatalogIntent.NONE


async def send_bot_reply(
    facebook,
    sender_id: str,
    reply: BotReply,
    page_id: Optional[str] = None,
    sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
    message_delay_seconds: float = settings.message_delay_seconds,
) -> int:
    """Send reply fragments in order, then any media as native attachments.

    Returns the number of text fragments actually sent.
    """
    sent = 0
    total = len(reply.messages)
    for index, fragment in enumerate(reply.messages):
        if reply.media_urls:
            fragment = strip_media_links_from_text(fragment, reply.media_urls)

        if not fragment or not fragment.strip():
            logger.debug(f"Skipping empty fragment {index + 1}/{total}")
            continue

        await facebook.send_text(sender_id, fragment, page_id)
        sent += 1

        if index < total - 1:
            await sleep_func(message_delay_seconds)

    if reply.media_urls:
        await facebook.send_media_attachments(sender_id, reply.media_urls, page_id)

    return sent


class CatalogCardStrategy:
    """Answers a catalog intent with an intro line and a carousel."""

    def __init__(
        self,
        intent: CatalogIntent,
        fetch: Callable[[], Awaitable[list]],
        send_cards: Callable[[str, list, Optional[str]], Awaitable[bool]],
        facebook,
        intro_text: str,
        follow_up_text: Optional[str] = None,
    ):
        self.intent = intent
        self.fetch = fetch
        self.send_cards = send_cards
        self.facebook = facebook
        self.intro_text = intro_text
        self.follow_up_text = follow_up_text

    @property
    def name(self) -> str:
        return f"{self.intent.value}_cards"

    async def attempt(self, turn: Turn) -> Outcome:
        if turn.intent != self.intent:
            return Outcome.NOT_APPLICABLE

        try:
            items = await self.fetch()
        except Exception as e:
            logger.error(f"Catalog lookup failed for {self.intent.value}: {e}")
            return Outcome.FAILED

        if not items:
            return Outcome.NOT_APPLICABLE

        await self.facebook.send_text(turn.sender_id, self.intro_text, turn.page_id)
        if not await self.send_cards(turn.sender_id, items, turn.page_id):
            return Outcome.FAILED

        if self.follow_up_text:
            await self.facebook.send_text(turn.sender_id, self.follow_up_text, turn.page_id)
        return Outcome.HANDLED


class AIReplyStrategy:
    name = "ai_reply"

    def __init__(
        self,
        responder,
        facebook,
        sleep_func=asyncio.sleep,
        message_delay_seconds: float = settings.message_delay_seconds,
    ):
        self.responder = responder
        self.facebook = facebook
        self._sleep = sleep_func
        self.message_delay_seconds = message_delay_seconds

    async def attempt(self, turn: Turn) -> Outcome:
        reply = BotReply.coerce(await self.responder.generate(turn.text, turn.sender_id))
        logger.info(
            "Sending AI reply",
            extra={
                "context": {
                    "sender_id": turn.sender_id,
                    "fragments": len(reply.messages),
                    "media": len(reply.media_urls),
                }
            },
        )
        await send_bot_reply(
            self.facebook, turn.sender_id, reply, turn.page_id, self._sleep, self.message_delay_seconds
        )
        return Outcome.HANDLED


def build_card_strategies(catalog, cards, facebook) -> list[CatalogCardStrategy]:
    """Card strategies in classifier priority order."""
    return [
        CatalogCardStrategy(
            CatalogIntent.PRODUCT, catalog.get_products, cards.send_product_cards, facebook, PRODUCT_INTRO
        ),
        CatalogCardStrategy(
            CatalogIntent.PROPERTY, catalog.get_properties, cards.send_property_cards, facebook, PROPERTY_INTRO
        ),
        CatalogCardStrategy(
            CatalogIntent.PAYMENT,
            catalog.get_payment_methods,
            cards.send_payment_method_cards,
            facebook,
            PAYMENT_INTRO,
            follow_up_text=PAYMENT_FOLLOW_UP,
        ),
    ]


class ResponseDispatcher:
    """Runs one text turn: takeover gate, typing, strategies, bookkeeping.

    Strategies are tried in order until one handles the turn; the AI reply
    strategy always runs last. Typing is switched off on every exit path and
    bookkeeping is only spawned once the customer has a reply.
    """

    def __init__(
        self,
        facebook,
        takeover_gate,
        strategies: Sequence,
        ai_strategy: AIReplyStrategy,
        bookkeeper,
        spawner,
        classifier: Callable[[str], CatalogIntent] = classify_intent,
    ):
        self.facebook = facebook
        self.takeover_gate = takeover_gate
        self.strategies = list(strategies)
        self.ai_strategy = ai_strategy
        self.bookkeeper = bookkeeper
        self.spawner = spawner
        self.classifier = classifier

    async def dispatch(self, sender_id: str, text: str, page_id: Optional[str] = None) -> TurnResult:
        if await self.takeover_gate.is_active(sender_id):
            return TurnResult.SUPPRESSED

        turn = Turn(sender_id=sender_id, text=text, page_id=page_id, intent=self.classifier(text))
        logger.info(
            "Dispatching turn",
            extra={"context": {"sender_id": sender_id, "intent": turn.intent.value}},
        )

        await self.facebook.send_typing(sender_id, True, page_id)
        try:
            result = await self._respond(turn)
        finally:
            await self.facebook.send_typing(sender_id, False, page_id)

        self.spawner.spawn(self.bookkeeper.after_text_turn(sender_id, text, page_id), name="lead_bookkeeping")
        return result

    async def _respond(self, turn: Turn) -> TurnResult:
        try:
            for strategy in self.strategies:
                outcome = await strategy.attempt(turn)
                if outcome == Outcome.HANDLED:
                    return TurnResult.CARDS
                if outcome == Outcome.FAILED:
                    logger.warning(
                        f"Strategy {strategy.name} failed, falling through",
                        extra={"context": {"sender_id": turn.sender_id}},
                    )

            await self.ai_strategy.attempt(turn)
        except Exception:
            logger.exception("Reply failed, sending fallback", extra={"context": {"sender_id": turn.sender_id}})
            await self.facebook.send_text(turn.sender_id, TEXT_FALLBACK_REPLY, turn.page_id)
            return TurnResult.FALLBACK
        return TurnResult.AI_REPLY
