import re
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from pagebot.database import SessionLocal
from pagebot.logging_config import get_logger
from pagebot.models import Lead

logger = get_logger("contact_service")

PHONE_PATTERNS = (
    # PH mobile: 09xx / +639xx with optional separators
    re.compile(r"(?:\+63|0)9\d{2}[-.\s]?\d{3}[-.\s]?\d{4}"),
    re.compile(r"\+\d{1,3}[-.\s]?\(?\d{1,4}\)?[-.\s]?\d{1,4}[-.\s]?\d{1,9}"),
    re.compile(r"\b0\d{10}\b"),
    re.compile(r"\b09\d{9}\b"),
)
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


@dataclass
class ContactInfo:
    phone: Optional[str] = None
    email: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.phone or self.email)


def extract_phone_numbers(text: str) -> list[str]:
    phones: list[str] = []
    for pattern in PHONE_PATTERNS:
        for match in pattern.findall(text or ""):
            normalized = re.sub(r"[-.\s]", "", match)
            if normalized not in phones:
                phones.append(normalized)
    return phones


def extract_emails(text: str) -> list[str]:
    return list(dict.fromkeys(email.lower() for email in EMAIL_PATTERN.findall(text or "")))


def extract_contact_info(text: str) -> ContactInfo:
    phones = extract_phone_numbers(text)
    emails = extract_emails(text)
    return ContactInfo(phone=phones[0] if phones else None, email=emails[0] if emails else None)


def update_lead_contact_info(db: Session, lead_id: UUID, info: ContactInfo) -> dict:
    """Fill phone/email only where the lead has none yet."""
    lead = db.query(Lead).filter(Lead.id == lead_id).first()
    if not lead:
        return {}

    updates = {}
    if info.phone and not lead.phone:
        updates["phone"] = info.phone
    if info.email and not lead.email:
        updates["email"] = info.email

    for field, value in updates.items():
        setattr(lead, field, value)
    db.flush()
    return updates


class ContactExtractor:
    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    async def extract_and_store(self, lead_id: UUID, text: str, history: Optional[list[dict]] = None) -> ContactInfo:
        info = extract_contact_info(text)
        if not info and history:
            # Earlier customer turns may carry a number given before the lead existed.
            for turn in reversed(history):
                if turn.get("role") == "user":
                    info = extract_contact_info(turn.get("content") or "")
                    if info:
                        break

        if not info:
            return info

        updates = await run_in_threadpool(self._store, lead_id, info)
        if updates:
            logger.info(
                "Lead contact info updated",
                extra={"context": {"lead_id": str(lead_id), "fields": sorted(updates)}},
            )
        return info

    def _store(self, lead_id: UUID, info: ContactInfo) -> dict:
        db = self._session_factory()
        try:
            updates = update_lead_contact_info(db, lead_id, info)
            db.commit()
            return updates
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
