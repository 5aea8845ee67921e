import asyncio
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from pagebot.config import settings
from pagebot.logging_config import get_logger
from pagebot.services.media_service import get_attachment_type

logger = get_logger("facebook_service")

MAX_CAROUSEL_ELEMENTS = 10


class TokenResolver(Protocol):
    async def get_page_token(self, page_id: Optional[str] = None) -> Optional[str]: ...


class FacebookClient:
    """Client for the Messenger Send API.

    Every send method returns ``True`` on a 2xx response and ``False`` otherwise;
    network errors and missing tokens are logged, never raised.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_resolver: TokenResolver,
        graph_api_url: str = settings.graph_api_url,
        media_delay_seconds: float = settings.media_delay_seconds,
        sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.http_client = http_client
        self.token_resolver = token_resolver
        self.graph_api_url = graph_api_url.rstrip("/")
        self.media_delay_seconds = media_delay_seconds
        self._sleep = sleep_func

    async def _resolve_token(self, page_id: Optional[str]) -> Optional[str]:
        try:
            return await self.token_resolver.get_page_token(page_id)
        except Exception as e:
            logger.error(f"Token lookup failed: {e}", extra={"context": {"page_id": page_id}})
            return None

    async def _post(self, payload: dict, page_id: Optional[str], action: str) -> bool:
        token = await self._resolve_token(page_id)
        if not token:
            logger.warning(
                f"No page access token, skipping {action}",
                extra={"context": {"page_id": page_id}},
            )
            return False

        try:
            response = await self.http_client.post(
                f"{self.graph_api_url}/me/messages",
                params={"access_token": token},
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error(f"Send API {action} failed: {e}")
            return False

        if not response.is_success:
            logger.error(
                f"Send API {action} error: {response.status_code}",
                extra={"context": {"body": response.text[:500]}},
            )
            return False

        return True

    async def send_message(self, recipient_id: str, message: dict, page_id: Optional[str] = None) -> bool:
        payload = {
            "messaging_type": "RESPONSE",
            "recipient": {"id": recipient_id},
            "message": message,
        }
        return await self._post(payload, page_id, "message")

    async def send_text(self, recipient_id: str, text: str, page_id: Optional[str] = None) -> bool:
        if not text:
            return False
        return await self.send_message(recipient_id, {"text": text}, page_id)

    async def send_typing(self, recipient_id: str, on: bool = True, page_id: Optional[str] = None) -> bool:
        payload = {
            "recipient": {"id": recipient_id},
            "sender_action": "typing_on" if on else "typing_off",
        }
        return await self._post(payload, page_id, "typing")

    async def send_generic_template(
        self, recipient_id: str, elements: list[dict], page_id: Optional[str] = None
    ) -> bool:
        if not elements:
            return False
        message = {
            "attachment": {
                "type": "template",
                "payload": {
                    "template_type": "generic",
                    "elements": elements[:MAX_CAROUSEL_ELEMENTS],
                },
            }
        }
        return await self.send_message(recipient_id, message, page_id)

    async def send_attachment(
        self, recipient_id: str, url: str, attachment_type: str, page_id: Optional[str] = None
    ) -> bool:
        message = {
            "attachment": {
                "type": attachment_type,
                "payload": {"url": url, "is_reusable": True},
            }
        }
        return await self.send_message(recipient_id, message, page_id)

    async def send_media_attachments(
        self, recipient_id: str, media_urls: list[str], page_id: Optional[str] = None
    ) -> bool:
        """Send each URL as a native attachment; a failed one is skipped."""
        if not media_urls:
            return False

        sent = 0
        for index, url in enumerate(media_urls):
            if await self.send_attachment(recipient_id, url, get_attachment_type(url), page_id):
                sent += 1
            else:
                logger.warning("Media attachment not sent", extra={"context": {"url": url}})
            if index < len(media_urls) - 1:
                await self._sleep(self.media_delay_seconds)

        logger.info(
            "Media attachments sent",
            extra={"context": {"recipient_id": recipient_id, "sent": sent, "total": len(media_urls)}},
        )
        return sent > 0

    async def get_user_profile(self, user_id: str, page_id: Optional[str] = None) -> Optional[dict]:
        token = await self._resolve_token(page_id)
        if not token:
            return None
        try:
            response = await self.http_client.get(
                f"{self.graph_api_url}/{user_id}",
                params={"fields": "first_name,last_name,name,profile_pic", "access_token": token},
            )
        except httpx.HTTPError as e:
            logger.error(f"Profile lookup failed: {e}")
            return None
        if not response.is_success:
            logger.warning(f"Profile lookup error: {response.status_code}")
            return None
        return response.json()
