import asyncio
from typing import Awaitable, Callable, Optional

from pagebot.config import settings
from pagebot.logging_config import get_logger
from pagebot.services.lead_service import LeadRecord, should_extract_name

logger = get_logger("bookkeeping_service")


class LeadBookkeeper:
    """Post-reply CRM work for a turn.

    Nothing here runs before the customer has their reply. The lead lookup and
    message count happen first; everything after that is spawned as its own
    background task so one failure never stops the others.
    """

    def __init__(
        self,
        leads,
        contacts,
        best_contact,
        conversation_log,
        spawner,
        sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name_delay_seconds: float = settings.name_extraction_delay_seconds,
        best_contact_delay_seconds: float = settings.best_contact_delay_seconds,
    ):
        self.leads = leads
        self.contacts = contacts
        self.best_contact = best_contact
        self.conversation_log = conversation_log
        self.spawner = spawner
        self._sleep = sleep_func
        self.name_delay_seconds = name_delay_seconds
        self.best_contact_delay_seconds = best_contact_delay_seconds

    async def after_text_turn(self, sender_id: str, text: str, page_id: Optional[str] = None) -> None:
        lead = await self.leads.get_or_create_lead(sender_id, page_id)
        if lead is None:
            logger.warning("No lead for sender", extra={"context": {"sender_id": sender_id}})
            return

        lead.message_count = await self.leads.increment_message_count(lead.id)
        logger.debug(
            "Lead message counted",
            extra={"context": {"lead_id": str(lead.id), "message_count": lead.message_count}},
        )

        if should_extract_name(lead.message_count):
            self.spawner.spawn(
                self._later(
                    self.name_delay_seconds, lambda: self.leads.extract_and_update_lead_name(lead.id, sender_id)
                ),
                name="extract_lead_name",
            )

        self.spawner.spawn(self._extract_contacts(lead, sender_id, text), name="extract_contacts")

        if self.leads.should_analyze_stage(lead, text):
            self.spawner.spawn(self._analyze_stage(lead, sender_id), name="analyze_stage")

        self._schedule_best_contact(lead, sender_id)

    async def after_image_turn(self, lead: LeadRecord, sender_id: str, accompanying_text: Optional[str]) -> None:
        lead.message_count = await self.leads.increment_message_count(lead.id)
        if accompanying_text:
            self.spawner.spawn(
                self._extract_contacts(lead, sender_id, accompanying_text), name="extract_contacts"
            )
        self._schedule_best_contact(lead, sender_id)

    def _schedule_best_contact(self, lead: LeadRecord, sender_id: str) -> None:
        # Delayed so the chat-log rows for this turn are written first.
        self.spawner.spawn(
            self._later(self.best_contact_delay_seconds, lambda: self.best_contact.update(sender_id, lead.id)),
            name="best_contact_times",
        )

    async def _later(self, delay: float, work: Callable[[], Awaitable]) -> None:
        await self._sleep(delay)
        await work()

    async def _extract_contacts(self, lead: LeadRecord, sender_id: str, text: str) -> None:
        history = await self.conversation_log.recent(sender_id, limit=10)
        await self.contacts.extract_and_store(lead.id, text, history)

    async def _analyze_stage(self, lead: LeadRecord, sender_id: str) -> None:
        result = await self.leads.analyze_and_update_stage(lead, sender_id)
        if not result.ok:
            logger.info(
                f"Stage analysis skipped: {result.error}",
                extra={"context": {"lead_id": str(lead.id), "code": result.error_code}},
            )
