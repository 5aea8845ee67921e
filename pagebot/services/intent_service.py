import re
from enum import Enum

from pagebot.logging_config import get_logger

logger = get_logger("intent_service")


class CatalogIntent(str, Enum):
    PRODUCT = "product"  # Customer asks what items are for sale
    PROPERTY = "property"  # Real-estate listings
    PAYMENT = "payment"  # How/where to pay
    NONE = "none"  # Nothing catalog-shaped, hand to the AI


PRODUCT_KEYWORDS = (
    "product",
    "products",
    "item",
    "items",
    "catalog",
    "catalogue",
    "shop",
    "store",
    "merchandise",
    "what do you sell",
    "what are you selling",
    "available items",
    "ano ang binebenta",
    "anong binebenta",
    "paninda",
    "tinda",
    "benta",
    "mga produkto",
    "produkto",
)

PROPERTY_KEYWORDS = (
    "property",
    "properties",
    "condo",
    "condominium",
    "house",
    "house and lot",
    "townhouse",
    "apartment",
    "real estate",
    "listing",
    "listings",
    "for rent",
    "for sale",
    "bedroom",
    "amortization",
    "downpayment",
    "down payment",
    "house price",
    "condo price",
    "bahay",
    "lupa",
    "paupahan",
)

PAYMENT_KEYWORDS = (
    "payment",
    "bayad",
    "magbayad",
    "pay",
    "gcash",
    "maya",
    "paymaya",
    "bank",
    "transfer",
    "account",
    "qr",
    "qr code",
    "send payment",
    "how to pay",
    "paano magbayad",
    "payment method",
    "payment option",
    "where to pay",
    "saan magbabayad",
    "bank details",
    "account number",
    "bdo",
    "bpi",
    "metrobank",
    "unionbank",
    "landbank",
    "pnb",
    "remittance",
    "padala",
    "deposit",
)

# Checked in order; the first table whose keywords match wins.
INTENT_KEYWORDS: tuple[tuple[CatalogIntent, tuple[str, ...]], ...] = (
    (CatalogIntent.PRODUCT, PRODUCT_KEYWORDS),
    (CatalogIntent.PROPERTY, PROPERTY_KEYWORDS),
    (CatalogIntent.PAYMENT, PAYMENT_KEYWORDS),
)


def normalize_for_matching(text: str) -> str:
    """Casefold, collapse whitespace and trim surrounding punctuation."""
    if not text:
        return ""

    normalized = text.strip().casefold()
    normalized = re.sub(r"\s+", " ", normalized)
    normalized = re.sub(r"^[^\w]+|[^\w]+$", "", normalized)
    return normalized


def classify_intent(text: str, table=INTENT_KEYWORDS) -> CatalogIntent:
    normalized = normalize_for_matching(text)
    if not normalized:
        return CatalogIntent.NONE

    for intent, keywords in table:
        if any(keyword in normalized for keyword in keywords):
            logger.debug("Catalog intent matched", extra={"context": {"intent": intent.value}})
            return intent

    return CatalogIntent.NONE
