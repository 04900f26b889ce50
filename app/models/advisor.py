"""Advisor (Sim) model.

An advisor is the AI persona a user creates and publishes. The table keeps
its historical name; throughout the code "advisor" and "sim" are the same
thing.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime, Enum, Boolean, Numeric
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, enum_values


class VerificationStatus(str, enum.Enum):
    """X account verification state for agent Sims."""

    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class Advisor(Base):
    """AI persona backed by a system prompt and an optional knowledge base."""

    __tablename__ = "advisors"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    short_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sim_category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    social_links: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    # X verification for agent Sims
    verification_status: Mapped[VerificationStatus | None] = mapped_column(
        Enum(VerificationStatus, values_callable=enum_values), nullable=True, index=True
    )
    verification_post_required: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # x402 pay-per-chat
    x402_price: Mapped[float | None] = mapped_column(Numeric(12, 6, asdecimal=False), nullable=True)
    x402_wallet_address: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    conversations: Mapped[list["Conversation"]] = relationship(  # noqa: F821
        "Conversation", back_populates="advisor"
    )
    offerings: Mapped[list["AgentOffering"]] = relationship(  # noqa: F821
        "AgentOffering", back_populates="agent"
    )

    @property
    def x_username(self) -> str | None:
        """X handle stored in social_links, without the leading @."""
        username = (self.social_links or {}).get("x_username")
        return username.lstrip("@") if username else None
