from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from pagebot.database import SessionLocal
from pagebot.logging_config import get_logger
from pagebot.models import HumanTakeoverSession
from pagebot.services.token_service import BotSettingsCache

logger = get_logger("takeover_service")


class TakeoverStateStore(Protocol):
    async def is_active(self, sender_id: str) -> bool: ...


def is_session_active(
    session: Optional[HumanTakeoverSession], now: datetime, default_timeout_minutes: int
) -> bool:
    """A takeover lasts ``timeout_minutes`` after the agent's last message."""
    if session is None or session.last_human_message_at is None:
        return False
    timeout = session.timeout_minutes or default_timeout_minutes
    return now < session.last_human_message_at + timedelta(minutes=timeout)


class TakeoverStore:
    """human_takeover_sessions access: one row per customer the agent is talking to."""

    def __init__(
        self,
        settings_cache: Optional[BotSettingsCache] = None,
        session_factory=SessionLocal,
        now_func: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._settings_cache = settings_cache or BotSettingsCache(session_factory=session_factory)
        self._session_factory = session_factory
        self._now = now_func

    async def get_timeout_minutes(self) -> int:
        config = await self._settings_cache.get()
        return config.human_takeover_timeout_minutes

    async def is_active(self, sender_id: str) -> bool:
        timeout = await self.get_timeout_minutes()
        return await run_in_threadpool(self._is_active, sender_id, timeout)

    async def start_or_refresh(self, sender_id: str) -> None:
        timeout = await self.get_timeout_minutes()
        await run_in_threadpool(self._start_or_refresh, sender_id, timeout)
        logger.info(
            "Human takeover started or refreshed",
            extra={"context": {"sender_id": sender_id, "timeout_minutes": timeout}},
        )

    async def end(self, sender_id: str) -> None:
        await run_in_threadpool(self._end, sender_id)
        logger.info("Human takeover ended", extra={"context": {"sender_id": sender_id}})

    def _is_active(self, sender_id: str, timeout: int) -> bool:
        db = self._session_factory()
        try:
            session = (
                db.query(HumanTakeoverSession)
                .filter(HumanTakeoverSession.lead_sender_id == sender_id)
                .first()
            )
            return is_session_active(session, self._now(), timeout)
        finally:
            db.close()

    def _start_or_refresh(self, sender_id: str, timeout: int) -> None:
        now = self._now()
        db = self._session_factory()
        try:
            session = (
                db.query(HumanTakeoverSession)
                .filter(HumanTakeoverSession.lead_sender_id == sender_id)
                .first()
            )
            if session is None:
                session = HumanTakeoverSession(lead_sender_id=sender_id, started_at=now, created_at=now)
                db.add(session)
            elif not is_session_active(session, now, timeout):
                session.started_at = now
            session.last_human_message_at = now
            session.timeout_minutes = timeout
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _end(self, sender_id: str) -> None:
        db = self._session_factory()
        try:
            db.query(HumanTakeoverSession).filter(HumanTakeoverSession.lead_sender_id == sender_id).delete()
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()


class TakeoverGate:
    """Boolean gate in front of the takeover store.

    A store failure is logged and treated as "no takeover" so customers are not
    left without a reply.
    """

    def __init__(self, store: TakeoverStateStore):
        self.store = store

    async def is_active(self, sender_id: str) -> bool:
        try:
            active = await self.store.is_active(sender_id)
        except Exception as e:
            logger.error(f"Takeover lookup failed: {e}", extra={"context": {"sender_id": sender_id}})
            return False
        if active:
            logger.info("Human takeover active, bot silent", extra={"context": {"sender_id": sender_id}})
        return bool(active)
