import json
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from pagebot.database import SessionLocal
from pagebot.logging_config import get_logger
from pagebot.models import Lead, PipelineStage
from pagebot.services.conversation_service import get_recent_history
from pagebot.services.llm import LLMError, LLMProvider
from pagebot.services.result import Result

logger = get_logger("lead_service")

MESSAGES_BEFORE_ANALYSIS = 5
STAGE_TRIGGER_KEYWORDS = (
    "buy",
    "price",
    "order",
    "payment",
    "interested",
    "how much",
    "magkano",
    "bili",
    "bayad",
)
RECEIPT_STAGE_NAME = "Receipt Submitted"
NAME_EXTRACTION_MIN_MESSAGES = 3
NAME_EXTRACTION_MAX_MESSAGES = 8

STAGE_PROMPT = """You are a sales pipeline classifier. Based on the conversation below, determine which pipeline stage this lead should be in.

AVAILABLE STAGES:
{stages}

CONVERSATION HISTORY:
{conversation}

Respond with ONLY a JSON object in this exact format:
{{"stage": "Stage Name", "reason": "Brief reason for classification"}}"""

NAME_PROMPT = """Read the conversation and find the customer's own name if they stated it.
Respond with ONLY a JSON object: {{"name": "Full Name"}} or {{"name": null}} if unknown.

CONVERSATION:
{conversation}"""


@dataclass
class LeadRecord:
    id: UUID
    sender_id: str
    name: Optional[str] = None
    current_stage_id: Optional[UUID] = None
    message_count: int = 0

    @classmethod
    def from_model(cls, lead: Lead) -> "LeadRecord":
        return cls(
            id=lead.id,
            sender_id=lead.sender_id,
            name=lead.name,
            current_stage_id=lead.current_stage_id,
            message_count=lead.message_count or 0,
        )


def should_analyze_stage(message_count: int, latest_message: Optional[str]) -> bool:
    """Re-classify every Nth message, or straight away on a buying signal."""
    if message_count > 0 and message_count % MESSAGES_BEFORE_ANALYSIS == 0:
        return True
    lowered = (latest_message or "").lower()
    return any(keyword in lowered for keyword in STAGE_TRIGGER_KEYWORDS)


def should_extract_name(message_count: int) -> bool:
    return NAME_EXTRACTION_MIN_MESSAGES <= message_count <= NAME_EXTRACTION_MAX_MESSAGES


def parse_json_object(text: str) -> Optional[dict]:
    """Pull the first {...} block out of a model reply, tolerating code fences."""
    match = re.search(r"\{[\s\S]*\}", text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def profile_display_name(profile: Optional[dict]) -> Optional[str]:
    if not profile:
        return None
    name = profile.get("name") or f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip()
    return name or None


def get_lead_by_sender(db: Session, sender_id: str) -> Optional[Lead]:
    return db.query(Lead).filter(Lead.sender_id == sender_id).first()


def create_lead(db: Session, sender_id: str, name: Optional[str], profile_pic: Optional[str]) -> Lead:
    """Insert the lead unless another worker already did, then return the stored row."""
    default_stage = db.query(PipelineStage).filter(PipelineStage.is_default.is_(True)).first()
    now = datetime.now(timezone.utc)
    stmt = (
        insert(Lead)
        .values(
            id=uuid.uuid4(),
            sender_id=sender_id,
            name=name,
            profile_pic=profile_pic,
            current_stage_id=default_stage.id if default_stage else None,
            message_count=0,
            last_message_at=now,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["sender_id"])
    )
    result = db.execute(stmt)
    if result.rowcount == 0:
        logger.info("Lead already created concurrently", extra={"context": {"sender_id": sender_id}})
    return get_lead_by_sender(db, sender_id)


def increment_lead_message_count(db: Session, lead_id: UUID) -> int:
    lead = db.query(Lead).filter(Lead.id == lead_id).with_for_update().first()
    if not lead:
        return 0
    lead.message_count = (lead.message_count or 0) + 1
    lead.last_message_at = datetime.now(timezone.utc)
    db.flush()
    return lead.message_count


def get_or_create_receipt_stage(db: Session) -> PipelineStage:
    stage = db.query(PipelineStage).filter(PipelineStage.name.ilike("%receipt%")).first()
    if stage:
        return stage
    max_order = db.query(func.max(PipelineStage.display_order)).scalar() or 0
    stage = PipelineStage(
        name=RECEIPT_STAGE_NAME,
        display_order=max_order + 1,
        color="#22c55e",
        description="Customer sent a payment receipt",
        created_at=datetime.now(timezone.utc),
    )
    db.add(stage)
    db.flush()
    return stage


class LeadTracker:
    """CRM bookkeeping for Messenger senders.

    Each public method runs one short unit of work in a worker thread and commits
    independently; nothing here is transactional across calls.
    """

    def __init__(self, session_factory=SessionLocal, llm: Optional[LLMProvider] = None, profile_client=None):
        self._session_factory = session_factory
        self.llm = llm
        self.profile_client = profile_client

    def _run(self, work, *args):
        db = self._session_factory()
        try:
            result = work(db, *args)
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def get_or_create_lead(self, sender_id: str, page_id: Optional[str] = None) -> Optional[LeadRecord]:
        existing = await run_in_threadpool(self._run, self._find, sender_id)
        if existing:
            return existing

        profile = None
        if self.profile_client is not None:
            profile = await self.profile_client.get_user_profile(sender_id, page_id)

        return await run_in_threadpool(
            self._run,
            self._create,
            sender_id,
            profile_display_name(profile),
            (profile or {}).get("profile_pic"),
        )

    @staticmethod
    def _find(db: Session, sender_id: str) -> Optional[LeadRecord]:
        lead = get_lead_by_sender(db, sender_id)
        return LeadRecord.from_model(lead) if lead else None

    @staticmethod
    def _create(db: Session, sender_id: str, name: Optional[str], profile_pic: Optional[str]) -> LeadRecord:
        lead = get_lead_by_sender(db, sender_id) or create_lead(db, sender_id, name, profile_pic)
        logger.info("Lead ready", extra={"context": {"sender_id": sender_id, "lead_id": str(lead.id)}})
        return LeadRecord.from_model(lead)

    async def increment_message_count(self, lead_id: UUID) -> int:
        return await run_in_threadpool(self._run, increment_lead_message_count, lead_id)

    def should_analyze_stage(self, lead: LeadRecord, latest_message: Optional[str]) -> bool:
        return should_analyze_stage(lead.message_count, latest_message)

    async def analyze_and_update_stage(self, lead: LeadRecord, sender_id: str) -> Result[str]:
        if self.llm is None:
            return Result.failure("No LLM configured", "no_llm")

        history, stages = await run_in_threadpool(self._run, self._load_stage_inputs, sender_id)
        if not history:
            return Result.failure("No conversation history", "no_history")
        if not stages:
            return Result.failure("No pipeline stages", "no_stages")

        prompt = STAGE_PROMPT.format(
            stages="\n".join(f"- {s['name']}: {s['description'] or 'No description'}" for s in stages),
            conversation="\n".join(
                f"{'Customer' if m['role'] == 'user' else 'Bot'}: {m['content']}" for m in history
            ),
        )
        try:
            response = await self.llm.generate(
                [{"role": "user", "content": prompt}], temperature=0.3, max_tokens=200, json_mode=True
            )
        except LLMError as e:
            return Result.from_exception(e, "llm_error")

        classification = parse_json_object(response.content)
        if not classification or not classification.get("stage"):
            return Result.failure("No stage in classification", "bad_response")

        wanted = str(classification["stage"]).lower()
        matched = next((s for s in stages if s["name"].lower() == wanted), None)
        if matched is None:
            return Result.failure(f"Unknown stage {classification['stage']}", "unknown_stage")

        await run_in_threadpool(
            self._run, self._apply_stage, lead.id, matched["id"], classification.get("reason")
        )
        logger.info(
            "Lead stage analyzed",
            extra={"context": {"lead_id": str(lead.id), "stage": matched["name"]}},
        )
        return Result.success(matched["name"])

    @staticmethod
    def _load_stage_inputs(db: Session, sender_id: str) -> tuple[list[dict], list[dict]]:
        history = get_recent_history(db, sender_id, limit=20)
        stages = [
            {"id": s.id, "name": s.name, "description": s.description}
            for s in db.query(PipelineStage).order_by(PipelineStage.display_order).all()
        ]
        return history, stages

    @staticmethod
    def _apply_stage(db: Session, lead_id: UUID, stage_id: UUID, reason: Optional[str]) -> None:
        lead = db.query(Lead).filter(Lead.id == lead_id).first()
        if not lead:
            return
        now = datetime.now(timezone.utc)
        if lead.current_stage_id != stage_id:
            lead.current_stage_id = stage_id
            lead.ai_classification_reason = reason or "AI classification"
        lead.last_analyzed_at = now
        lead.updated_at = now

    async def move_lead_to_receipt_stage(self, lead_id: UUID, image_url: str, details: str) -> None:
        await run_in_threadpool(self._run, self._move_to_receipt, lead_id, image_url, details)
        logger.info("Lead moved to receipt stage", extra={"context": {"lead_id": str(lead_id)}})

    @staticmethod
    def _move_to_receipt(db: Session, lead_id: UUID, image_url: str, details: str) -> None:
        lead = db.query(Lead).filter(Lead.id == lead_id).first()
        if not lead:
            return
        stage = get_or_create_receipt_stage(db)
        now = datetime.now(timezone.utc)
        lead.current_stage_id = stage.id
        lead.receipt_image_url = image_url
        lead.receipt_detected_at = now
        lead.ai_classification_reason = details
        lead.updated_at = now

    async def extract_and_update_lead_name(self, lead_id: UUID, sender_id: str) -> Optional[str]:
        if self.llm is None:
            return None

        history = await run_in_threadpool(self._run, get_recent_history, sender_id, 10)
        customer_lines = [m["content"] for m in history if m["role"] == "user"]
        if not customer_lines:
            return None

        response = await self.llm.generate(
            [{"role": "user", "content": NAME_PROMPT.format(conversation="\n".join(customer_lines))}],
            temperature=0.0,
            max_tokens=50,
            json_mode=True,
        )
        data = parse_json_object(response.content) or {}
        name = (data.get("name") or "").strip()
        if not name or len(name) > 80:
            return None

        await run_in_threadpool(self._run, self._set_name, lead_id, name)
        logger.info("Lead name extracted", extra={"context": {"lead_id": str(lead_id)}})
        return name

    @staticmethod
    def _set_name(db: Session, lead_id: UUID, name: str) -> None:
        lead = db.query(Lead).filter(Lead.id == lead_id).first()
        if lead:
            lead.name = name
            lead.updated_at = datetime.now(timezone.utc)
