from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi.concurrency import run_in_threadpool

from pagebot.database import SessionLocal
from pagebot.logging_config import get_logger
from pagebot.models import Lead
from pagebot.services.conversation_service import ConversationLog

logger = get_logger("best_contact_service")

MANILA_TZ = timezone(timedelta(hours=8), name="Asia/Manila")
DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
HOURS_IN_WEEK = 7 * 24
WINDOW_FIRST_HOUR = 8
WINDOW_LAST_HOUR = 18
MAX_WINDOW_HOURS = 3
MAX_WINDOWS = 7
MAX_REPLY_MINUTES = 24 * 60


def format_hour(hour: int) -> str:
    suffix = "PM" if hour >= 12 else "AM"
    display = hour % 12 or 12
    return f"{display}:00 {suffix}"


def collect_reply_times(timeline: list[tuple[str, datetime]]) -> list[tuple[datetime, float]]:
    """Customer replies to bot messages within a day, as (reply time in Manila, delay minutes)."""
    replies = []
    for index, (role, sent_at) in enumerate(timeline):
        if role != "assistant":
            continue
        for next_role, reply_at in timeline[index + 1 :]:
            if next_role != "user":
                continue
            delay = (reply_at - sent_at).total_seconds() / 60
            if 0 < delay < MAX_REPLY_MINUTES:
                replies.append((reply_at.astimezone(MANILA_TZ), delay))
            break
    return replies


def compute_best_contact_times(timeline: list[tuple[str, datetime]], now: Optional[datetime] = None) -> Optional[dict]:
    """Score 1-3 hour business-hours windows per weekday from a Laplace-smoothed reply histogram."""
    if len(timeline) < 2:
        return None

    replies = collect_reply_times(timeline)
    if not replies:
        return None

    histogram = [0] * HOURS_IN_WEEK
    for reply_at, _ in replies:
        histogram[reply_at.weekday() * 24 + reply_at.hour] += 1

    total = sum(histogram)
    smoothed = [(count + 1) / (total + HOURS_IN_WEEK) for count in histogram]

    windows = []
    for day in range(7):
        best = None
        for start in range(WINDOW_FIRST_HOUR, WINDOW_LAST_HOUR):
            for end in range(start + 1, min(start + MAX_WINDOW_HOURS, WINDOW_LAST_HOUR) + 1):
                score = sum(smoothed[day * 24 + hour] for hour in range(start, end)) / (end - start)
                if best is None or score > best[0]:
                    best = (score, start, end)
        score, start, end = best
        windows.append({"day": day, "start": start, "end": end, "score": score})

    windows.sort(key=lambda w: w["score"], reverse=True)
    delays = [delay for _, delay in replies]
    average_delay = round(sum(delays) / len(delays))

    return {
        "bestContactTimes": [
            {
                "dayOfWeek": DAY_NAMES[w["day"]],
                "timeRange": f"{format_hour(w['start'])} - {format_hour(w['end'])}",
                "startHour": w["start"],
                "endHour": w["end"],
                "confidence": min(100, round(w["score"] * 1000)),
                "averageReplyTime": average_delay or None,
                "messageCount": len(replies),
            }
            for w in windows[:MAX_WINDOWS]
        ],
        "totalMessagesAnalyzed": len(timeline),
        "averageReplyTime": average_delay,
        "fastestReplyTime": min(delays),
        "slowestReplyTime": max(delays),
        "computedAt": (now or datetime.now(MANILA_TZ)).isoformat(),
        "timezone": "Asia/Manila",
        "isDefault": False,
    }


class BestContactTimeEstimator:
    def __init__(self, conversation_log: Optional[ConversationLog] = None, session_factory=SessionLocal):
        self.conversation_log = conversation_log or ConversationLog(session_factory)
        self._session_factory = session_factory

    async def compute(self, sender_id: str) -> Optional[dict]:
        timeline = await self.conversation_log.timeline(sender_id)
        return compute_best_contact_times(timeline)

    async def store(self, lead_id: UUID, data: dict) -> None:
        await run_in_threadpool(self._store, lead_id, data)

    async def update(self, sender_id: str, lead_id: UUID) -> Optional[dict]:
        data = await self.compute(sender_id)
        if data is None:
            logger.debug("Not enough replies for contact times", extra={"context": {"sender_id": sender_id}})
            return None
        await self.store(lead_id, data)
        return data

    def _store(self, lead_id: UUID, data: dict) -> None:
        db = self._session_factory()
        try:
            lead = db.query(Lead).filter(Lead.id == lead_id).first()
            if lead:
                lead.best_contact_times = data
                lead.updated_at = datetime.now(timezone.utc)
                db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
