from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel


class MessengerUser(BaseModel):
    id: Optional[str] = None


class AttachmentPayload(BaseModel):
    url: Optional[str] = None


class MessengerAttachment(BaseModel):
    type: str
    payload: Optional[AttachmentPayload] = None


class MessengerMessage(BaseModel):
    mid: Optional[str] = None
    text: Optional[str] = None
    is_echo: bool = False
    attachments: Optional[list[MessengerAttachment]] = None


class MessengerReferral(BaseModel):
    ref: Optional[str] = None
    source: Optional[str] = None
    type: Optional[str] = None


class MessengerPostback(BaseModel):
    payload: Optional[str] = None
    title: Optional[str] = None
    referral: Optional[MessengerReferral] = None


class MessagingEvent(BaseModel):
    sender: Optional[MessengerUser] = None
    recipient: Optional[MessengerUser] = None
    timestamp: Optional[int] = None
    message: Optional[MessengerMessage] = None
    postback: Optional[MessengerPostback] = None
    referral: Optional[MessengerReferral] = None


class WebhookEntry(BaseModel):
    id: Optional[str] = None
    time: Optional[int] = None
    messaging: list[Any] = []


class WebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: list[WebhookEntry] = []


@dataclass
class Attachment:
    type: str
    url: str


@dataclass
class InboundDelivery:
    """One messaging event normalized for the pipeline; never persisted."""

    sender_id: str
    recipient_id: Optional[str] = None
    message_id: Optional[str] = None
    text: Optional[str] = None
    attachments: list[Attachment] = field(default_factory=list)
    postback: Optional[MessengerPostback] = None
    referral: Optional[MessengerReferral] = None
    is_echo: bool = False

    @property
    def page_id(self) -> Optional[str]:
        """Our page id. Echoes are sent by the page, so their recipient is the customer."""
        return None if self.is_echo else self.recipient_id

    @property
    def image_urls(self) -> list[str]:
        return [att.url for att in self.attachments if att.type == "image"]

    @classmethod
    def from_event(cls, event: MessagingEvent) -> Optional["InboundDelivery"]:
        sender_id = event.sender.id if event.sender else None
        if not sender_id:
            return None

        message = event.message
        attachments = []
        if message and message.attachments:
            for att in message.attachments:
                if att.payload and att.payload.url:
                    attachments.append(Attachment(type=att.type, url=att.payload.url))

        return cls(
            sender_id=sender_id,
            recipient_id=event.recipient.id if event.recipient else None,
            message_id=message.mid if message else None,
            text=message.text if message else None,
            attachments=attachments,
            postback=event.postback,
            referral=event.referral,
            is_echo=bool(message and message.is_echo),
        )
