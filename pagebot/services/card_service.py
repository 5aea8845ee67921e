from decimal import Decimal
from typing import Any, Iterable, Optional

from pagebot.config import settings
from pagebot.logging_config import get_logger
from pagebot.services.facebook_service import MAX_CAROUSEL_ELEMENTS, FacebookClient

logger = get_logger("card_service")

SUBTITLE_SEPARATOR = " • "
DESCRIPTION_LIMIT = 50
PRICE_UPON_REQUEST = "Price upon request"


def format_peso(amount: Any, decimals: int = 2) -> Optional[str]:
    if amount is None or amount == "":
        return None
    try:
        value = Decimal(str(amount))
    except ArithmeticError:
        return None
    if not value:
        return None
    return f"₱{value:,.{decimals}f}"


def truncate(text: str, limit: int = DESCRIPTION_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def web_url_button(title: str, url: str) -> dict:
    return {"type": "web_url", "url": url, "title": title, "webview_height_ratio": "tall"}


def postback_button(title: str, payload: str) -> dict:
    return {"type": "postback", "title": title, "payload": payload}


def _element(title: str, subtitle: str, image_url: Optional[str], buttons: list[dict]) -> dict:
    element = {"title": title, "subtitle": subtitle}
    if image_url:
        element["image_url"] = image_url
    element["buttons"] = buttons
    return element


def build_product_element(product, app_base_url: str = settings.app_base_url) -> dict:
    subtitle = format_peso(product.price) or PRICE_UPON_REQUEST
    if product.description:
        subtitle += f"{SUBTITLE_SEPARATOR}{truncate(product.description)}"
    return _element(
        product.name,
        subtitle,
        product.image_url,
        [web_url_button("View Product", f"{app_base_url}/product/{product.id}")],
    )


def build_property_element(prop, app_base_url: str = settings.app_base_url) -> dict:
    subtitle = format_peso(prop.price, decimals=0) or PRICE_UPON_REQUEST
    details = SUBTITLE_SEPARATOR.join(
        part
        for part in (
            prop.address,
            f"{prop.bedrooms} Beds" if prop.bedrooms else None,
            f"{prop.bathrooms} Baths" if prop.bathrooms else None,
        )
        if part
    )
    if details:
        subtitle += f"\n{details}"
    return _element(
        prop.title,
        subtitle,
        prop.image_url,
        [
            web_url_button("View Details", f"{app_base_url}/property/{prop.id}"),
            postback_button("💬 Inquire", f"INQUIRE_PROP_{prop.id}"),
        ],
    )


def build_payment_element(method) -> dict:
    subtitle = "\n".join(
        part
        for part in (
            f"Account: {method.account_name}" if method.account_name else None,
            f"Number: {method.account_number}" if method.account_number else None,
        )
        if part
    )
    buttons = [postback_button("✅ I'll pay here", f"PAY_{method.id}")]
    if method.qr_code_url:
        buttons.append(web_url_button("📱 View QR Code", method.qr_code_url))
    return _element(method.name, subtitle or "Payment method available", method.qr_code_url, buttons)


def build_property_referral_element(prop, app_base_url: str = settings.app_base_url) -> dict:
    """Single card shown when a customer arrives from a property link."""
    parts = [format_peso(prop.price, decimals=0) or "Price on request"]
    if prop.address:
        parts.append(prop.address)
    if prop.status:
        parts.append(prop.status.replace("_", " "))
    specs = [
        spec
        for spec in (
            f"{prop.bedrooms} BR" if prop.bedrooms else None,
            f"{prop.bathrooms} BA" if prop.bathrooms else None,
        )
        if spec
    ]
    if specs:
        parts.append(SUBTITLE_SEPARATOR.join(specs))
    return _element(
        prop.title,
        SUBTITLE_SEPARATOR.join(parts),
        prop.image_url,
        [
            web_url_button("View Property", f"{app_base_url}/property/{prop.id}"),
            postback_button("I want to inquire", f"INQUIRE_PROP_{prop.id}"),
        ],
    )


class CardSender:
    """Sends catalog rows as generic-template carousels.

    Each ``send_*`` returns ``False`` for an empty list or a failed send so the
    caller can move on to the next response strategy.
    """

    def __init__(self, facebook: FacebookClient, app_base_url: str = settings.app_base_url):
        self.facebook = facebook
        self.app_base_url = app_base_url.rstrip("/")

    async def _send(self, kind: str, sender_id: str, elements: list[dict], page_id: Optional[str]) -> bool:
        if not elements:
            return False
        sent = await self.facebook.send_generic_template(sender_id, elements, page_id)
        if sent:
            logger.info(f"{kind} cards sent", extra={"context": {"sender_id": sender_id, "count": len(elements)}})
        else:
            logger.warning(f"{kind} cards not sent", extra={"context": {"sender_id": sender_id}})
        return sent

    async def send_product_cards(self, sender_id: str, products: Iterable, page_id: Optional[str] = None) -> bool:
        items = list(products)[:MAX_CAROUSEL_ELEMENTS]
        elements = [build_product_element(p, self.app_base_url) for p in items]
        return await self._send("Product", sender_id, elements, page_id)

    async def send_property_cards(self, sender_id: str, properties: Iterable, page_id: Optional[str] = None) -> bool:
        items = list(properties)[:MAX_CAROUSEL_ELEMENTS]
        elements = [build_property_element(p, self.app_base_url) for p in items]
        return await self._send("Property", sender_id, elements, page_id)

    async def send_payment_method_cards(
        self, sender_id: str, methods: Iterable, page_id: Optional[str] = None
    ) -> bool:
        items = list(methods)[:MAX_CAROUSEL_ELEMENTS]
        elements = [build_payment_element(m) for m in items]
        return await self._send("Payment", sender_id, elements, page_id)
