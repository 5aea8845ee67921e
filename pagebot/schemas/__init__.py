from pagebot.schemas.messenger import InboundDelivery, MessagingEvent, WebhookPayload
from pagebot.schemas.takeover import TakeoverRequest, TakeoverResponse, TakeoverStatusResponse

__all__ = [
    "InboundDelivery",
    "MessagingEvent",
    "WebhookPayload",
    "TakeoverRequest",
    "TakeoverResponse",
    "TakeoverStatusResponse",
]
