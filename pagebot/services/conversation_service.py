from datetime import datetime, timezone
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from pagebot.database import SessionLocal
from pagebot.models import ConversationMessage


def save_chat_message(db: Session, sender_id: str, role: str, content: str) -> ConversationMessage:
    """Append one line to the sender's chat log."""
    message = ConversationMessage(
        sender_id=sender_id,
        role=role,
        content=content,
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def get_recent_history(db: Session, sender_id: str, limit: int = 10) -> list[dict]:
    """Last ``limit`` turns, oldest first, as role/content dicts."""
    rows = (
        db.query(ConversationMessage)
        .filter(ConversationMessage.sender_id == sender_id)
        .order_by(ConversationMessage.created_at.desc())
        .limit(limit)
        .all()
    )
    return [{"role": row.role, "content": row.content} for row in reversed(rows)]


def get_timeline(db: Session, sender_id: str) -> list[tuple[str, datetime]]:
    rows = (
        db.query(ConversationMessage.role, ConversationMessage.created_at)
        .filter(ConversationMessage.sender_id == sender_id)
        .order_by(ConversationMessage.created_at)
        .all()
    )
    return [(role, created_at) for role, created_at in rows]


class ConversationLog:
    """Async wrapper over the chat-log helpers; each call uses its own session."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def _run(self, func, *args, commit: bool = False):
        db = self._session_factory()
        try:
            result = func(db, *args)
            if commit:
                db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def append(self, sender_id: str, role: str, content: Optional[str]) -> None:
        if not content:
            return
        await run_in_threadpool(self._run, save_chat_message, sender_id, role, content, commit=True)

    async def recent(self, sender_id: str, limit: int = 10) -> list[dict]:
        return await run_in_threadpool(self._run, get_recent_history, sender_id, limit)

    async def timeline(self, sender_id: str) -> list[tuple[str, datetime]]:
        return await run_in_threadpool(self._run, get_timeline, sender_id)
