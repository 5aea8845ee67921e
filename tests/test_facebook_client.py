import json
from unittest.mock import AsyncMock

import httpx
import pytest

from pagebot.services.facebook_service import FacebookClient

GRAPH = "https://graph.facebook.com/v21.0"


class StaticTokens:
    def __init__(self, token="tok_page"):
        self.token = token
        self.pages = []

    async def get_page_token(self, page_id=None):
        self.pages.append(page_id)
        return self.token


class Recorder:
    def __init__(self, status_code=200, fail_urls=()):
        self.requests: list[httpx.Request] = []
        self.status_code = status_code
        self.fail_urls = fail_urls

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json={"first_name": "Juan", "last_name": "Cruz", "profile_pic": "p.jpg"})
        body = json.loads(request.content)
        url = body.get("message", {}).get("attachment", {}).get("payload", {}).get("url")
        if url in self.fail_urls:
            return httpx.Response(400, json={"error": {"message": "bad url"}})
        return httpx.Response(self.status_code, json={"recipient_id": "user_1", "message_id": "m_out"})

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]


def make_client(recorder, tokens=None, sleep=None):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return FacebookClient(
        http_client, tokens or StaticTokens(), GRAPH, media_delay_seconds=0.3, sleep_func=sleep or AsyncMock()
    )


class TestSendText:
    @pytest.mark.asyncio
    async def test_posts_to_send_api(self):
        recorder = Recorder()
        tokens = StaticTokens()
        client = make_client(recorder, tokens)

        assert await client.send_text("user_1", "Hello po!", "page_1") is True

        request = recorder.requests[0]
        assert request.url.path == "/v21.0/me/messages"
        assert request.url.params["access_token"] == "tok_page"
        assert recorder.bodies()[0] == {
            "messaging_type": "RESPONSE",
            "recipient": {"id": "user_1"},
            "message": {"text": "Hello po!"},
        }
        assert tokens.pages == ["page_1"]

    @pytest.mark.asyncio
    async def test_empty_text_not_sent(self):
        recorder = Recorder()
        assert await make_client(recorder).send_text("user_1", "") is False
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_error_status_returns_false(self):
        assert await make_client(Recorder(status_code=500)).send_text("user_1", "hi") is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = FacebookClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)), StaticTokens(), GRAPH)
        assert await client.send_text("user_1", "hi") is False

    @pytest.mark.asyncio
    async def test_missing_token_is_noop(self):
        recorder = Recorder()
        assert await make_client(recorder, StaticTokens(token=None)).send_text("user_1", "hi") is False
        assert recorder.requests == []


class TestOtherSends:
    @pytest.mark.asyncio
    async def test_typing(self):
        recorder = Recorder()
        client = make_client(recorder)
        await client.send_typing("user_1", True)
        await client.send_typing("user_1", False)

        assert [b["sender_action"] for b in recorder.bodies()] == ["typing_on", "typing_off"]

    @pytest.mark.asyncio
    async def test_generic_template_capped(self):
        recorder = Recorder()
        elements = [{"title": f"Item {i}", "subtitle": "x", "buttons": []} for i in range(12)]

        assert await make_client(recorder).send_generic_template("user_1", elements) is True

        payload = recorder.bodies()[0]["message"]["attachment"]["payload"]
        assert payload["template_type"] == "generic"
        assert len(payload["elements"]) == 10

    @pytest.mark.asyncio
    async def test_generic_template_empty(self):
        recorder = Recorder()
        assert await make_client(recorder).send_generic_template("user_1", []) is False
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_media_attachments_in_order_with_delay(self):
        recorder = Recorder(fail_urls=("https://cdn.example.com/broken.png",))
        sleep = AsyncMock()
        client = make_client(recorder, sleep=sleep)
        urls = [
            "https://cdn.example.com/a.jpg",
            "https://cdn.example.com/broken.png",
            "https://cdn.example.com/tour.mp4",
            "https://cdn.example.com/brochure.pdf",
        ]

        assert await client.send_media_attachments("user_1", urls) is True

        attachments = [b["message"]["attachment"] for b in recorder.bodies()]
        assert [a["payload"]["url"] for a in attachments] == urls
        assert [a["type"] for a in attachments] == ["image", "image", "video", "file"]
        assert all(a["payload"]["is_reusable"] is True for a in attachments)
        assert sleep.await_count == 3
        sleep.assert_awaited_with(0.3)

    @pytest.mark.asyncio
    async def test_user_profile(self):
        recorder = Recorder()
        profile = await make_client(recorder).get_user_profile("user_1")

        assert profile["first_name"] == "Juan"
        assert recorder.requests[0].url.path == "/v21.0/user_1"
