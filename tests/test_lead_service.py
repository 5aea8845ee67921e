import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from pagebot.models import Lead
from pagebot.services.lead_service import (
    LeadRecord,
    LeadTracker,
    create_lead,
    parse_json_object,
    profile_display_name,
    should_analyze_stage,
    should_extract_name,
)
from pagebot.services.llm import LLMError, LLMResponse

STAGES = [
    {"id": uuid4(), "name": "New Lead", "description": "Just started chatting"},
    {"id": uuid4(), "name": "Interested", "description": "Asked about price"},
]


class TestStageTriggers:
    def test_every_fifth_message(self):
        assert should_analyze_stage(5, "ok") is True
        assert should_analyze_stage(10, "ok") is True
        assert should_analyze_stage(6, "ok") is False
        assert should_analyze_stage(0, "ok") is False

    def test_buying_keywords(self):
        assert should_analyze_stage(2, "Magkano po?") is True
        assert should_analyze_stage(1, "I want to BUY this") is True
        assert should_analyze_stage(1, None) is False

    def test_name_extraction_window(self):
        assert [n for n in range(1, 11) if should_extract_name(n)] == [3, 4, 5, 6, 7, 8]


class TestParsing:
    def test_parse_json_object_with_fence(self):
        assert parse_json_object('```json\n{"stage": "Interested"}\n```') == {"stage": "Interested"}

    def test_parse_json_object_invalid(self):
        assert parse_json_object("no json here") is None
        assert parse_json_object("{not: valid}") is None
        assert parse_json_object(None) is None

    def test_profile_display_name(self):
        assert profile_display_name({"name": "Juan Cruz"}) == "Juan Cruz"
        assert profile_display_name({"first_name": "Juan", "last_name": None}) == "Juan"
        assert profile_display_name({}) is None
        assert profile_display_name(None) is None


def make_tracker(llm, history=None, stages=STAGES):
    tracker = LeadTracker(session_factory=Mock(), llm=llm)
    tracker._load_stage_inputs = lambda db, sender_id: (history or [], stages)
    tracker._apply_stage = Mock()
    return tracker


class TestAnalyzeAndUpdateStage:
    @pytest.fixture
    def lead(self):
        return LeadRecord(id=uuid4(), sender_id="user_1", message_count=5)

    @pytest.mark.asyncio
    async def test_matching_stage_applied(self, lead):
        llm = Mock()
        llm.generate = AsyncMock(
            return_value=LLMResponse(content='{"stage": "interested", "reason": "asked price"}', model="m")
        )
        tracker = make_tracker(llm, history=[{"role": "user", "content": "magkano?"}])

        result = await tracker.analyze_and_update_stage(lead, "user_1")

        assert result.ok is True
        assert result.value == "Interested"
        db = tracker._session_factory.return_value
        tracker._apply_stage.assert_called_once_with(db, lead.id, STAGES[1]["id"], "asked price")
        prompt = llm.generate.await_args.args[0][0]["content"]
        assert "- Interested: Asked about price" in prompt
        assert "Customer: magkano?" in prompt

    @pytest.mark.asyncio
    async def test_unknown_stage(self, lead):
        llm = Mock()
        llm.generate = AsyncMock(return_value=LLMResponse(content='{"stage": "Closed Won"}', model="m"))
        tracker = make_tracker(llm, history=[{"role": "user", "content": "hi"}])

        result = await tracker.analyze_and_update_stage(lead, "user_1")

        assert result.error_code == "unknown_stage"
        tracker._apply_stage.assert_not_called()

    @pytest.mark.asyncio
    async def test_llm_error(self, lead):
        llm = Mock()
        llm.generate = AsyncMock(side_effect=LLMError("boom", status_code=500))
        tracker = make_tracker(llm, history=[{"role": "user", "content": "hi"}])

        result = await tracker.analyze_and_update_stage(lead, "user_1")

        assert result.ok is False
        assert result.error_code == "llm_error"

    @pytest.mark.asyncio
    async def test_no_history(self, lead):
        tracker = make_tracker(Mock())
        assert (await tracker.analyze_and_update_stage(lead, "user_1")).error_code == "no_history"

    @pytest.mark.asyncio
    async def test_no_llm(self, lead):
        result = await LeadTracker(session_factory=Mock()).analyze_and_update_stage(lead, "user_1")
        assert result.error_code == "no_llm"


class TestLeadRecord:
    def test_from_model(self):
        row = SimpleNamespace(id=uuid4(), sender_id="user_1", name=None, current_stage_id=None, message_count=None)
        record = LeadRecord.from_model(row)
        assert record.message_count == 0
        assert record.sender_id == "user_1"


class FakeLeadQuery:
    def __init__(self, rows, model):
        self.rows = rows
        self.model = model
        self.sender_id = None

    def filter(self, criterion):
        if self.model is Lead:
            self.sender_id = criterion.right.value
        return self

    def first(self):
        if self.model is not Lead:
            return None
        return self.rows.get(self.sender_id)


class FakeLeadSession:
    """Applies ON CONFLICT (sender_id) DO NOTHING against a shared dict of rows."""

    def __init__(self, rows):
        self.rows = rows
        self.statements = []

    def query(self, model):
        return FakeLeadQuery(self.rows, model)

    def execute(self, stmt):
        compiled = stmt.compile(dialect=postgresql.dialect())
        self.statements.append(str(compiled))
        params = compiled.params
        row = SimpleNamespace(
            id=params["id"],
            sender_id=params["sender_id"],
            name=params["name"],
            current_stage_id=params["current_stage_id"],
            message_count=params["message_count"],
        )
        inserted = self.rows.setdefault(params["sender_id"], row) is row
        return SimpleNamespace(rowcount=1 if inserted else 0)

    def commit(self):
        pass

    def rollback(self):
        pass

    def close(self):
        pass


class TestGetOrCreateLead:
    @pytest.mark.asyncio
    async def test_concurrent_creates_share_one_lead(self):
        rows = {}
        sessions = []

        def session_factory():
            session = FakeLeadSession(rows)
            sessions.append(session)
            return session

        tracker = LeadTracker(session_factory=session_factory)
        # Both callers miss on the initial lookup, as two racing image turns would.
        tracker._find = lambda db, sender_id: None

        first, second = await asyncio.gather(
            tracker.get_or_create_lead("user_1"),
            tracker.get_or_create_lead("user_1"),
        )

        assert first.id == second.id
        assert list(rows) == ["user_1"]
        inserts = [s for session in sessions for s in session.statements]
        assert inserts
        assert all("ON CONFLICT (sender_id) DO NOTHING" in s for s in inserts)

    @pytest.mark.asyncio
    async def test_existing_lead_returned_without_insert(self):
        existing = SimpleNamespace(id=uuid4(), sender_id="user_1", name="Juan", current_stage_id=None, message_count=4)
        session = FakeLeadSession({"user_1": existing})
        tracker = LeadTracker(session_factory=lambda: session)

        lead = await tracker.get_or_create_lead("user_1")

        assert lead.id == existing.id
        assert lead.message_count == 4
        assert session.statements == []

    def test_create_lead_after_conflict_returns_stored_row(self):
        winner = SimpleNamespace(id=uuid4(), sender_id="user_1", name=None, current_stage_id=None, message_count=0)
        rows = {"user_1": winner}
        session = FakeLeadSession(rows)

        lead = create_lead(session, "user_1", "Juan", None)

        assert lead is winner
        assert rows == {"user_1": winner}
        assert "ON CONFLICT (sender_id) DO NOTHING" in session.statements[0]
