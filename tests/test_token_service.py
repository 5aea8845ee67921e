from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.exc import OperationalError

from pagebot.services.token_service import BotConfig, BotSettingsCache, PageTokenResolver


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def session_factory_returning(row):
    db = Mock()
    db.query.return_value.order_by.return_value.first.return_value = row
    db.query.return_value.filter.return_value.first.return_value = row
    return Mock(return_value=db)


def failing_session_factory():
    db = Mock()
    db.query.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    return Mock(return_value=db)


class TestBotSettingsCache:
    @pytest.mark.asyncio
    async def test_loads_row_with_fallbacks(self):
        row = SimpleNamespace(
            bot_name="Ate Joy",
            bot_tone=None,
            facebook_verify_token="verify_me",
            facebook_page_access_token="tok_settings",
            human_takeover_timeout_minutes=None,
        )
        cache = BotSettingsCache(session_factory=session_factory_returning(row))

        config = await cache.get()

        assert config.bot_name == "Ate Joy"
        assert config.bot_tone == "helpful and professional"
        assert config.facebook_verify_token == "verify_me"
        assert config.human_takeover_timeout_minutes == 5

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self):
        clock = FakeClock()
        factory = session_factory_returning(None)
        cache = BotSettingsCache(session_factory=factory, ttl_seconds=60, clock=clock)

        await cache.get()
        clock.now += 30
        await cache.get()
        assert factory.call_count == 1

        clock.now += 31
        await cache.get()
        assert factory.call_count == 2

    @pytest.mark.asyncio
    async def test_database_error_returns_defaults(self):
        cache = BotSettingsCache(session_factory=failing_session_factory())
        assert await cache.get() == BotConfig()

    @pytest.mark.asyncio
    async def test_invalidate(self):
        factory = session_factory_returning(None)
        cache = BotSettingsCache(session_factory=factory, clock=FakeClock())
        await cache.get()
        cache.invalidate()
        await cache.get()
        assert factory.call_count == 2


class TestPageTokenResolver:
    @pytest.mark.asyncio
    async def test_connected_page_token_first(self):
        factory = session_factory_returning(SimpleNamespace(page_access_token="tok_page"))
        settings_cache = SimpleNamespace(get=AsyncMock(return_value=BotConfig(facebook_page_access_token="tok_bot")))
        resolver = PageTokenResolver(settings_cache, session_factory=factory, clock=FakeClock())

        assert await resolver.get_page_token("page_1") == "tok_page"
        assert await resolver.get_page_token("page_1") == "tok_page"
        assert factory.call_count == 1
        settings_cache.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_bot_settings(self):
        settings_cache = SimpleNamespace(get=AsyncMock(return_value=BotConfig(facebook_page_access_token="tok_bot")))
        resolver = PageTokenResolver(settings_cache, session_factory=session_factory_returning(None))

        assert await resolver.get_page_token("page_unknown") == "tok_bot"
        assert await resolver.get_page_token(None) == "tok_bot"

    @pytest.mark.asyncio
    async def test_database_error_falls_back(self):
        settings_cache = SimpleNamespace(get=AsyncMock(return_value=BotConfig(facebook_page_access_token="tok_bot")))
        resolver = PageTokenResolver(settings_cache, session_factory=failing_session_factory())

        assert await resolver.get_page_token("page_1") == "tok_bot"

    @pytest.mark.asyncio
    async def test_no_token_anywhere(self, monkeypatch):
        monkeypatch.setattr("pagebot.services.token_service.settings.facebook_page_access_token", None)
        settings_cache = SimpleNamespace(get=AsyncMock(return_value=BotConfig(facebook_page_access_token=None)))
        resolver = PageTokenResolver(settings_cache, session_factory=session_factory_returning(None))

        assert await resolver.get_page_token("page_1") is None
