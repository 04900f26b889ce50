"""Agent offerings and the purchases made against them."""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime, Enum, ForeignKey, Boolean, Numeric
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, enum_values


class OfferingType(str, enum.Enum):
    """What the buyer receives."""

    STANDARD = "standard"
    DIGITAL_FILE = "digital_file"
    AGENT = "agent"


class PurchaseStatus(str, enum.Enum):
    """Purchase lifecycle."""

    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class AgentOffering(Base):
    """Something a Sim sells: a service, a file, or paid agent access."""

    __tablename__ = "agent_offerings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("advisors.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[float] = mapped_column(Numeric(12, 6, asdecimal=False), default=0)
    price_per_conversation: Mapped[float | None] = mapped_column(
        Numeric(12, 6, asdecimal=False), nullable=True
    )
    offering_type: Mapped[OfferingType] = mapped_column(
        Enum(OfferingType, values_callable=enum_values), default=OfferingType.STANDARD
    )
    delivery_method: Mapped[str | None] = mapped_column(String(100), nullable=True)
    digital_file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # [{"name": "email", "label": "Email address", "type": "string", "required": true}]
    required_info: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    agent: Mapped["Advisor"] = relationship(  # noqa: F821
        "Advisor", back_populates="offerings", lazy="joined"
    )


class AgentPurchase(Base):
    """A paid purchase of an offering, keyed by its on-chain transaction."""

    __tablename__ = "agent_purchases"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    offering_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agent_offerings.id"), nullable=False, index=True
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("advisors.id"), nullable=False, index=True
    )
    buyer_wallet: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_paid: Mapped[float] = mapped_column(Numeric(12, 6, asdecimal=False), nullable=False)
    transaction_signature: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    payment_network: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), default="x402")
    buyer_info: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    status: Mapped[PurchaseStatus] = mapped_column(
        Enum(PurchaseStatus, values_callable=enum_values), default=PurchaseStatus.COMPLETED
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
