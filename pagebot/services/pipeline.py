from typing import Optional

import httpx
from pydantic import ValidationError

from pagebot.config import settings
from pagebot.logging_config import get_logger
from pagebot.schemas.messenger import InboundDelivery, MessagingEvent, WebhookPayload
from pagebot.services.ai_service import LLMResponder, get_llm_provider
from pagebot.services.background import BackgroundTaskSpawner
from pagebot.services.batch_service import MessageBatcher, Scheduler
from pagebot.services.best_contact_service import BestContactTimeEstimator
from pagebot.services.bookkeeping_service import LeadBookkeeper
from pagebot.services.card_service import CardSender
from pagebot.services.catalog_service import CatalogRepository
from pagebot.services.contact_service import ContactExtractor
from pagebot.services.conversation_service import ConversationLog
from pagebot.services.dedup_service import DeliveryDeduplicator
from pagebot.services.dispatcher import AIReplyStrategy, ResponseDispatcher, build_card_strategies
from pagebot.services.facebook_service import FacebookClient
from pagebot.services.image_service import ImageAnalyzer
from pagebot.services.lead_service import LeadTracker
from pagebot.services.receipt_service import ImageMessageHandler
from pagebot.services.referral_service import PostbackHandler, ReferralHandler
from pagebot.services.takeover_service import TakeoverGate, TakeoverStore
from pagebot.services.token_service import BotSettingsCache, PageTokenResolver

logger = get_logger("pipeline")


class MessengerPipeline:
    """Long-lived owner of the inbound webhook state.

    Holds the dedup record and the per-sender batches, and routes each messaging
    event to the referral, postback, image or text path. Routing only schedules
    work, so the webhook can acknowledge immediately.
    """

    def __init__(
        self,
        dedup: DeliveryDeduplicator,
        dispatcher: ResponseDispatcher,
        image_handler: ImageMessageHandler,
        referrals: ReferralHandler,
        postbacks: PostbackHandler,
        takeover_store,
        spawner,
        scheduler: Optional[Scheduler] = None,
        batching_enabled: bool = settings.batching_enabled,
        batch_delay_seconds: float = settings.batch_delay_seconds,
    ):
        self.dedup = dedup
        self.dispatcher = dispatcher
        self.image_handler = image_handler
        self.referrals = referrals
        self.postbacks = postbacks
        self.takeover_store = takeover_store
        self.spawner = spawner
        self.batcher = MessageBatcher(
            dispatch=self._dispatch_text,
            spawner=spawner,
            scheduler=scheduler,
            delay_seconds=batch_delay_seconds,
            enabled=batching_enabled,
        )

    async def _dispatch_text(self, sender_id: str, text: str, page_id: Optional[str]) -> None:
        await self.dispatcher.dispatch(sender_id, text, page_id)

    def process_payload(self, body: dict) -> int:
        """Route every messaging event in a page delivery; returns how many were routed."""
        try:
            payload = WebhookPayload.model_validate(body)
        except ValidationError as e:
            logger.warning(f"Unexpected webhook shape: {e}")
            return 0

        routed = 0
        for entry in payload.entry:
            if not entry.messaging:
                logger.debug("Entry without messaging events", extra={"context": {"entry_id": entry.id}})
                continue
            for raw_event in entry.messaging:
                try:
                    event = MessagingEvent.model_validate(raw_event)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed messaging event: {e}")
                    continue

                delivery = InboundDelivery.from_event(event)
                if delivery is None:
                    continue
                if self.handle_delivery(delivery):
                    routed += 1
        return routed

    def handle_delivery(self, delivery: InboundDelivery) -> bool:
        if not self.dedup.should_process(delivery.message_id):
            return False

        if delivery.is_echo:
            # A human agent replied from the page inbox; the recipient is the customer.
            if delivery.recipient_id:
                logger.info(
                    "Message echo, starting human takeover",
                    extra={"context": {"customer_id": delivery.recipient_id}},
                )
                self.spawner.spawn(self.takeover_store.start_or_refresh(delivery.recipient_id), name="takeover_echo")
            return True

        if delivery.referral:
            self.spawner.spawn(
                self.referrals.handle(delivery.sender_id, delivery.referral, delivery.page_id), name="referral"
            )
            return True

        if delivery.postback:
            self.spawner.spawn(self._handle_postback(delivery), name="postback")
            return True

        return self.route_message(delivery)

    async def _handle_postback(self, delivery: InboundDelivery) -> None:
        handled = await self.postbacks.handle(delivery.sender_id, delivery.postback, delivery.page_id)
        if not handled:
            self.route_message(delivery)

    def route_message(self, delivery: InboundDelivery) -> bool:
        image_urls = delivery.image_urls
        if image_urls:
            # Any text rides along with the image instead of being batched.
            for url in image_urls:
                self.spawner.spawn(
                    self.image_handler.handle(delivery.sender_id, url, delivery.page_id, delivery.text),
                    name="image_message",
                )
            return True

        if delivery.text:
            self.batcher.enqueue(delivery.sender_id, delivery.text, delivery.page_id)
            return True

        return False

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        self.batcher.cancel_all()
        await self.spawner.drain(timeout)


def build_pipeline(
    http_client: httpx.AsyncClient,
    settings_cache: Optional[BotSettingsCache] = None,
    spawner: Optional[BackgroundTaskSpawner] = None,
) -> MessengerPipeline:
    """Wire the production collaborators around one shared HTTP client."""
    spawner = spawner or BackgroundTaskSpawner()
    settings_cache = settings_cache or BotSettingsCache()
    facebook = FacebookClient(http_client, PageTokenResolver(settings_cache))
    llm = get_llm_provider(http_client)
    conversation_log = ConversationLog()
    catalog = CatalogRepository()
    cards = CardSender(facebook)
    leads = LeadTracker(llm=llm, profile_client=facebook)
    takeover_store = TakeoverStore(settings_cache)
    takeover_gate = TakeoverGate(takeover_store)
    responder = LLMResponder(llm, conversation_log, settings_cache)
    bookkeeper = LeadBookkeeper(
        leads=leads,
        contacts=ContactExtractor(),
        best_contact=BestContactTimeEstimator(conversation_log),
        conversation_log=conversation_log,
        spawner=spawner,
    )

    dispatcher = ResponseDispatcher(
        facebook=facebook,
        takeover_gate=takeover_gate,
        strategies=build_card_strategies(catalog, cards, facebook),
        ai_strategy=AIReplyStrategy(responder, facebook),
        bookkeeper=bookkeeper,
        spawner=spawner,
    )
    image_handler = ImageMessageHandler(
        facebook=facebook,
        takeover_gate=takeover_gate,
        analyzer=ImageAnalyzer(llm),
        catalog=catalog,
        leads=leads,
        responder=responder,
        bookkeeper=bookkeeper,
        spawner=spawner,
    )
    referrals = ReferralHandler(facebook, catalog, cards)

    return MessengerPipeline(
        dedup=DeliveryDeduplicator(),
        dispatcher=dispatcher,
        image_handler=image_handler,
        referrals=referrals,
        postbacks=PostbackHandler(facebook, catalog, referrals),
        takeover_store=takeover_store,
        spawner=spawner,
    )
