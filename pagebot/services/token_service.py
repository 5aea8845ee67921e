import time
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from pagebot.config import settings
from pagebot.database import SessionLocal
from pagebot.logging_config import get_logger
from pagebot.models import BotSettings, ConnectedPage

logger = get_logger("token_service")


@dataclass
class BotConfig:
    """Snapshot of the bot_settings row with environment fallbacks applied."""

    bot_name: str = "Assistant"
    bot_tone: str = "helpful and professional"
    facebook_verify_token: str = settings.facebook_verify_token
    facebook_page_access_token: Optional[str] = settings.facebook_page_access_token
    human_takeover_timeout_minutes: int = settings.human_takeover_timeout_minutes


class BotSettingsCache:
    """Reads bot_settings at most once per ``ttl_seconds``."""

    def __init__(
        self,
        session_factory=SessionLocal,
        ttl_seconds: float = settings.settings_cache_seconds,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: Optional[BotConfig] = None
        self._fetched_at = 0.0

    async def get(self) -> BotConfig:
        now = self._clock()
        if self._cached is not None and now - self._fetched_at < self.ttl_seconds:
            return self._cached

        try:
            config = await run_in_threadpool(self._load)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load bot settings: {e}")
            return self._cached or BotConfig()

        self._cached = config
        self._fetched_at = now
        return config

    def invalidate(self) -> None:
        self._cached = None

    def _load(self) -> BotConfig:
        db = self._session_factory()
        try:
            row = db.query(BotSettings).order_by(BotSettings.created_at).first()
        finally:
            db.close()

        if row is None:
            return BotConfig()

        return BotConfig(
            bot_name=row.bot_name or "Assistant",
            bot_tone=row.bot_tone or "helpful and professional",
            facebook_verify_token=row.facebook_verify_token or settings.facebook_verify_token,
            facebook_page_access_token=row.facebook_page_access_token,
            human_takeover_timeout_minutes=row.human_takeover_timeout_minutes
            or settings.human_takeover_timeout_minutes,
        )


class PageTokenResolver:
    """Finds the access token to use for a page.

    Order: the active connected_pages row for the page, then bot_settings, then the
    FACEBOOK_PAGE_ACCESS_TOKEN environment value. Page tokens are cached.
    """

    def __init__(
        self,
        settings_cache: Optional[BotSettingsCache] = None,
        session_factory=SessionLocal,
        ttl_seconds: float = settings.settings_cache_seconds,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings_cache = settings_cache or BotSettingsCache(session_factory=session_factory)
        self._session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._page_tokens: dict[str, tuple[str, float]] = {}

    async def get_page_token(self, page_id: Optional[str] = None) -> Optional[str]:
        if page_id:
            now = self._clock()
            cached = self._page_tokens.get(page_id)
            if cached and now - cached[1] < self.ttl_seconds:
                return cached[0]

            try:
                token = await run_in_threadpool(self._load_page_token, page_id)
            except SQLAlchemyError as e:
                logger.error(f"Failed to load token for page {page_id}: {e}")
                token = None

            if token:
                self._page_tokens[page_id] = (token, now)
                return token

        config = await self._settings_cache.get()
        token = config.facebook_page_access_token or settings.facebook_page_access_token
        if not token:
            logger.warning("No page access token configured", extra={"context": {"page_id": page_id}})
        return token

    def _load_page_token(self, page_id: str) -> Optional[str]:
        db = self._session_factory()
        try:
            page = (
                db.query(ConnectedPage)
                .filter(ConnectedPage.page_id == page_id, ConnectedPage.is_active.is_(True))
                .first()
            )
            return page.page_access_token if page else None
        finally:
            db.close()
