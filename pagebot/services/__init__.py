from pagebot.services.dedup_service import DeliveryDeduplicator
from pagebot.services.intent_service import CatalogIntent, classify_intent
from pagebot.services.result import Result

__all__ = [
    "DeliveryDeduplicator",
    "CatalogIntent",
    "classify_intent",
    "Result",
]
