"""Escalation rules and conversation captures (leads)."""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime, Enum, ForeignKey, Integer, Boolean
from sqlalchemy.dialects.postgresql import UUID, ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, enum_values

DEFAULT_CONTACT_CAPTURE_MESSAGE = (
    "I'd love to connect you with someone who can help further. "
    "Could you share your name and the best email or phone number to reach you?"
)


class CaptureStatus(str, enum.Enum):
    """Follow-up state of a captured lead."""

    NEW = "new"
    CONTACTED = "contacted"
    CONVERTED = "converted"
    ARCHIVED = "archived"


class EscalationRule(Base):
    """Per-Sim keyword scoring rules that decide when to escalate a chat."""

    __tablename__ = "escalation_rules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    advisor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("advisors.id"), nullable=False, index=True
    )
    score_threshold: Mapped[int] = mapped_column(Integer, default=5)
    message_count_threshold: Mapped[int] = mapped_column(Integer, default=10)
    urgency_keywords: Mapped[list[str]] = mapped_column(ARRAY(Text), default=list)
    value_keywords: Mapped[list[str]] = mapped_column(ARRAY(Text), default=list)
    vip_keywords: Mapped[list[str]] = mapped_column(ARRAY(Text), default=list)
    custom_keywords: Mapped[list[str]] = mapped_column(ARRAY(Text), default=list)
    contact_capture_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    contact_capture_message: Mapped[str] = mapped_column(
        Text, default=DEFAULT_CONTACT_CAPTURE_MESSAGE
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class ConversationCapture(Base):
    """Lead captured when a conversation crosses its escalation threshold."""

    __tablename__ = "conversation_captures"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False, index=True
    )
    advisor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("advisors.id"), nullable=False, index=True
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    trigger_reason: Mapped[str] = mapped_column(Text, nullable=False)
    conversation_score: Mapped[int] = mapped_column(Integer, default=0)
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[CaptureStatus] = mapped_column(
        Enum(CaptureStatus, values_callable=enum_values), default=CaptureStatus.NEW
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
