from dataclasses import dataclass, field
from typing import Optional

from pagebot.logging_config import get_logger
from pagebot.schemas.messenger import MessengerPostback, MessengerReferral
from pagebot.services.card_service import build_property_referral_element

logger = get_logger("referral_service")

PRODUCT_NOT_FOUND_TEXT = "Hi! Thanks for messaging us. How can we help you today?"
PROPERTY_NOT_FOUND_TEXT = "Hi! Thanks for checking a property. How can we help you today?"
GENERIC_REFERRAL_TEXT = "Hi! Thanks for reaching out. How can we help you today?"

INQUIRE_PREFIX = "INQUIRE_PROP_"
PAY_PREFIX = "PAY_"


@dataclass
class ReferralTarget:
    product_id: Optional[str] = None
    property_id: Optional[str] = None
    variations: list[str] = field(default_factory=list)


def parse_referral_ref(ref: Optional[str]) -> ReferralTarget:
    """Parse m.me refs like ``p_id:123|vars:Size-M,Color-Red`` or ``prop_id:456``."""
    params: dict[str, str] = {}
    for part in (ref or "").split("|"):
        key, sep, value = part.partition(":")
        key = key.strip()
        if sep and key and key not in params:
            params[key] = value.strip()

    variations = [v.strip() for v in params.get("vars", "").split(",") if v.strip()]
    return ReferralTarget(
        product_id=params.get("p_id") or None,
        property_id=params.get("prop_id") or params.get("property_id") or None,
        variations=variations,
    )


def product_welcome_text(name: str, variations: list[str]) -> str:
    options = f"\nSelected Options: {', '.join(variations)}" if variations else ""
    return f"Hi! 👋 I see you're interested in {name}.{options}\n\nHow can we help you with your purchase today?"


def property_welcome_text(title: str) -> str:
    return f'Hi! 👋 I see you\'re checking out "{title}". Would you like to talk to an agent about this property?'


class ReferralHandler:
    def __init__(self, facebook, catalog, cards):
        self.facebook = facebook
        self.catalog = catalog
        self.cards = cards

    async def handle(self, sender_id: str, referral: MessengerReferral, page_id: Optional[str] = None) -> bool:
        if not referral or not referral.ref:
            return False

        target = parse_referral_ref(referral.ref)
        logger.info("Handling referral", extra={"context": {"sender_id": sender_id, "ref": referral.ref}})

        if target.product_id:
            product = await self.catalog.get_product(target.product_id)
            if product is None:
                logger.warning(f"Referral product not found: {target.product_id}")
                await self.facebook.send_text(sender_id, PRODUCT_NOT_FOUND_TEXT, page_id)
                return True
            await self.facebook.send_text(sender_id, product_welcome_text(product.name, target.variations), page_id)
            await self.cards.send_product_cards(sender_id, [product], page_id)
            return True

        if target.property_id:
            prop = await self.catalog.get_property(target.property_id)
            if prop is None:
                logger.warning(f"Referral property not found: {target.property_id}")
                await self.facebook.send_text(sender_id, PROPERTY_NOT_FOUND_TEXT, page_id)
                return True
            await self.facebook.send_text(sender_id, property_welcome_text(prop.title), page_id)
            await self.facebook.send_generic_template(
                sender_id, [build_property_referral_element(prop, self.cards.app_base_url)], page_id
            )
            return True

        await self.facebook.send_text(sender_id, GENERIC_REFERRAL_TEXT, page_id)
        return True


class PostbackHandler:
    def __init__(self, facebook, catalog, referrals: ReferralHandler):
        self.facebook = facebook
        self.catalog = catalog
        self.referrals = referrals

    async def handle(self, sender_id: str, postback: MessengerPostback, page_id: Optional[str] = None) -> bool:
        """Returns True when the postback needs no further processing."""
        if postback.referral:
            await self.referrals.handle(sender_id, postback.referral, page_id)
            return True

        payload = postback.payload or ""

        if payload.startswith(PAY_PREFIX):
            logger.info("Payment postback received", extra={"context": {"payload": payload}})
            return False

        if payload.startswith(INQUIRE_PREFIX):
            property_id = payload[len(INQUIRE_PREFIX) :]
            prop = await self.catalog.get_property(property_id)
            title = prop.title if prop is not None else "this property"
            await self.facebook.send_text(
                sender_id,
                f"Thanks for your interest in {title}! An agent will be with you shortly to assist you.",
                page_id,
            )
            return True

        return False
