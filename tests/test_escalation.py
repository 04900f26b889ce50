"""Tests for escalation scoring and rule persistence."""

import uuid
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from app.models.conversation import UrgencyLevel
from app.models.escalation import CaptureStatus, ConversationCapture, EscalationRule
from app.services.escalation import EscalationService, analyze_message


def _rules(**overrides):
    values = {
        "score_threshold": 5,
        "urgency_keywords": ["urgent", "asap"],
        "value_keywords": ["buy", "pricing"],
        "vip_keywords": ["enterprise"],
        "custom_keywords": ["demo"],
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestAnalyzeMessage:
    """Tests for the additive keyword score."""

    def test_plain_message_scores_zero(self):
        analysis = analyze_message("hello there", _rules())

        assert analysis.score == 0
        assert analysis.intent == "general"
        assert analysis.urgency_level == UrgencyLevel.LOW
        assert analysis.keywords_detected == []
        assert analysis.should_escalate is False
        assert analysis.trigger_reason is None

    def test_urgency_keyword(self):
        analysis = analyze_message("I need this URGENT", _rules())

        assert analysis.score == 3
        assert analysis.urgency_level == UrgencyLevel.HIGH
        assert analysis.intent == "urgent_request"
        assert analysis.keywords_detected == ["urgent"]
        assert analysis.should_escalate is False

    def test_value_keyword_and_question_reach_threshold(self):
        analysis = analyze_message("What is your pricing?", _rules())

        assert analysis.score == 5
        assert analysis.intent == "sales_inquiry"
        assert analysis.should_escalate is True
        assert analysis.trigger_reason == "Score: 5 (threshold: 5), Keywords: pricing"

    def test_vip_keyword_wins_intent_and_urgency(self):
        analysis = analyze_message("enterprise team, urgent, ready to buy", _rules())

        assert analysis.score == 3 + 4 + 5
        assert analysis.urgency_level == UrgencyLevel.CRITICAL
        assert analysis.intent == "vip_inquiry"
        assert analysis.keywords_detected == ["urgent", "buy", "enterprise"]

    def test_custom_keyword(self):
        analysis = analyze_message("book a demo", _rules())

        assert analysis.score == 2
        assert analysis.intent == "general"

    def test_content_heuristics(self):
        assert analyze_message("can you help me?", _rules()).score == 2
        assert analyze_message("x" * 201, _rules()).score == 1
        assert analyze_message("x" * 200, _rules()).score == 0

    def test_only_first_keyword_per_group_counts(self):
        analysis = analyze_message("buy now, pricing please", _rules())

        assert analysis.score == 4
        assert analysis.keywords_detected == ["buy"]

    def test_empty_and_missing_keyword_lists(self):
        rules = _rules(urgency_keywords=[""], value_keywords=None, vip_keywords=[], custom_keywords=None)

        assert analyze_message("anything", rules).score == 0

    def test_to_dict_serializes_urgency(self):
        data = analyze_message("urgent", _rules()).to_dict()

        assert data["urgency_level"] == "high"
        assert data["score"] == 3
        assert data["keywords_detected"] == ["urgent"]


class TestEscalationService:
    """Tests for rules and capture persistence."""

    @pytest.mark.asyncio
    async def test_upsert_creates_rules_with_editable_fields_only(self, db, make_result):
        db.execute.return_value = make_result(scalar=None)
        advisor_id = uuid.uuid4()

        rules = await EscalationService(db).upsert_rules(
            advisor_id, {"score_threshold": 7, "advisor_id": uuid.uuid4(), "id": "x"}
        )

        assert isinstance(rules, EscalationRule)
        assert rules.advisor_id == advisor_id
        assert rules.score_threshold == 7
        db.add.assert_called_once_with(rules)
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_rules(self, db, make_result):
        existing = EscalationRule(advisor_id=uuid.uuid4(), score_threshold=5, value_keywords=["buy"])
        db.execute.return_value = make_result(scalar=existing)

        rules = await EscalationService(db).upsert_rules(
            existing.advisor_id, {"value_keywords": ["pricing"], "score_threshold": 3}
        )

        assert rules is existing
        assert rules.value_keywords == ["pricing"]
        assert rules.score_threshold == 3
        assert rules.updated_at is not None
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_capture_starts_as_new(self, db):
        capture = await EscalationService(db).create_capture(
            conversation_id=uuid.uuid4(),
            advisor_id=uuid.uuid4(),
            trigger_reason="Score: 6 (threshold: 5), Keywords: pricing",
            conversation_score=6,
            message_count=3,
        )

        assert isinstance(capture, ConversationCapture)
        assert capture.status == CaptureStatus.NEW
        db.add.assert_called_once_with(capture)

    @pytest.mark.asyncio
    async def test_update_missing_capture(self, db):
        db.get.return_value = None

        updated = await EscalationService(db).update_capture_status(uuid.uuid4(), CaptureStatus.CONTACTED)

        assert updated is False

    @pytest.mark.asyncio
    async def test_update_capture_status_and_notes(self, db):
        capture = MagicMock(status=CaptureStatus.NEW, notes=None)
        db.get.return_value = capture

        updated = await EscalationService(db).update_capture_status(
            uuid.uuid4(), CaptureStatus.CONVERTED, notes="Signed up"
        )

        assert updated is True
        assert capture.status == CaptureStatus.CONVERTED
        assert capture.notes == "Signed up"
