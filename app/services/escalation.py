"""Conversation escalation: keyword scoring, rules and lead captures.

Every incoming user message is scored against the Sim's active escalation
rules. Keyword groups add fixed weights, a few content heuristics add one
point each, and a message whose score reaches the threshold escalates the
conversation so the Sim can ask for contact details.

Scoring table:
    urgency keyword  +3  (urgency high, intent urgent_request)
    value keyword    +4  (intent sales_inquiry)
    VIP keyword      +5  (urgency critical, intent vip_inquiry)
    custom keyword   +2
    contains "?"     +1
    over 200 chars   +1
    contains "help"  +1
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.conversation import UrgencyLevel
from app.models.escalation import CaptureStatus, ConversationCapture, EscalationRule

logger = logging.getLogger(__name__)

URGENCY_WEIGHT = 3
VALUE_WEIGHT = 4
VIP_WEIGHT = 5
CUSTOM_WEIGHT = 2
LONG_MESSAGE_CHARS = 200

# Fields a Sim owner may change through the rules API
EDITABLE_RULE_FIELDS = (
    "score_threshold",
    "message_count_threshold",
    "urgency_keywords",
    "value_keywords",
    "vip_keywords",
    "custom_keywords",
    "contact_capture_enabled",
    "contact_capture_message",
    "is_active",
)


class KeywordRules(Protocol):
    """The part of an escalation rule the scorer reads."""

    score_threshold: int
    urgency_keywords: list[str]
    value_keywords: list[str]
    vip_keywords: list[str]
    custom_keywords: list[str]


@dataclass
class ConversationAnalysis:
    """Result of scoring one message."""

    score: int = 0
    intent: str = "general"
    urgency_level: UrgencyLevel = UrgencyLevel.LOW
    keywords_detected: list[str] = field(default_factory=list)
    should_escalate: bool = False
    trigger_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["urgency_level"] = self.urgency_level.value
        return data


def _first_match(content: str, keywords: list[str] | None) -> str | None:
    """Return the first keyword contained in ``content`` (already lower-cased)."""
    for keyword in keywords or []:
        if keyword and keyword.lower() in content:
            return keyword
    return None


def analyze_message(content: str, rules: KeywordRules) -> ConversationAnalysis:
    """Score a user message against a Sim's escalation rules.

    Matching is case-insensitive substring search. Only the first matching
    keyword of each group is recorded and scored.
    """
    lowered = content.lower()
    analysis = ConversationAnalysis()

    urgency = _first_match(lowered, rules.urgency_keywords)
    if urgency is not None:
        analysis.keywords_detected.append(urgency)
        analysis.score += URGENCY_WEIGHT
        analysis.urgency_level = UrgencyLevel.HIGH
        analysis.intent = "urgent_request"

    value = _first_match(lowered, rules.value_keywords)
    if value is not None:
        analysis.keywords_detected.append(value)
        analysis.score += VALUE_WEIGHT
        analysis.intent = "sales_inquiry"

    vip = _first_match(lowered, rules.vip_keywords)
    if vip is not None:
        analysis.keywords_detected.append(vip)
        analysis.score += VIP_WEIGHT
        analysis.urgency_level = UrgencyLevel.CRITICAL
        analysis.intent = "vip_inquiry"

    custom = _first_match(lowered, rules.custom_keywords)
    if custom is not None:
        analysis.keywords_detected.append(custom)
        analysis.score += CUSTOM_WEIGHT

    if "?" in lowered:
        analysis.score += 1
    if len(lowered) > LONG_MESSAGE_CHARS:
        analysis.score += 1
    if "help" in lowered:
        analysis.score += 1

    analysis.should_escalate = analysis.score >= rules.score_threshold
    if analysis.should_escalate:
        analysis.trigger_reason = (
            f"Score: {analysis.score} (threshold: {rules.score_threshold}), "
            f"Keywords: {', '.join(analysis.keywords_detected)}"
        )

    return analysis


class EscalationService:
    """Persistence for escalation rules and conversation captures."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_rules(self, advisor_id: uuid.UUID) -> EscalationRule | None:
        """Get the active rule set for a Sim, if any."""
        result = await self._db.execute(
            select(EscalationRule)
            .where(
                EscalationRule.advisor_id == advisor_id,
                EscalationRule.is_active.is_(True),
            )
            .order_by(EscalationRule.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert_rules(self, advisor_id: uuid.UUID, changes: dict[str, Any]) -> EscalationRule:
        """Update the Sim's active rule set, or create one if it has none."""
        values = {k: v for k, v in changes.items() if k in EDITABLE_RULE_FIELDS}
        rules = await self.get_rules(advisor_id)

        if rules is None:
            rules = EscalationRule(advisor_id=advisor_id, **values)
            self._db.add(rules)
            logger.info(f"Created escalation rules for advisor {advisor_id}")
        else:
            for key, value in values.items():
                setattr(rules, key, value)
            rules.updated_at = datetime.now(timezone.utc)
            logger.info(f"Updated escalation rules for advisor {advisor_id}: {sorted(values)}")

        await self._db.flush()
        return rules

    async def list_captures(self, advisor_id: uuid.UUID) -> list[ConversationCapture]:
        """List a Sim's captured leads, newest first."""
        result = await self._db.execute(
            select(ConversationCapture)
            .where(ConversationCapture.advisor_id == advisor_id)
            .order_by(ConversationCapture.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_capture(
        self,
        conversation_id: uuid.UUID,
        advisor_id: uuid.UUID,
        trigger_reason: str,
        conversation_score: int,
        message_count: int,
    ) -> ConversationCapture:
        """Record a lead for an escalated conversation."""
        capture = ConversationCapture(
            conversation_id=conversation_id,
            advisor_id=advisor_id,
            trigger_reason=trigger_reason,
            conversation_score=conversation_score,
            message_count=message_count,
            status=CaptureStatus.NEW,
        )
        self._db.add(capture)
        await self._db.flush()
        return capture

    async def update_capture_status(
        self,
        capture_id: uuid.UUID,
        status: CaptureStatus,
        notes: str | None = None,
    ) -> bool:
        """Move a capture through its follow-up states.

        Returns:
            False when the capture does not exist
        """
        capture = await self._db.get(ConversationCapture, capture_id)
        if capture is None:
            return False

        capture.status = status
        if notes is not None:
            capture.notes = notes
        await self._db.flush()
        return True
