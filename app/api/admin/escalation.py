"""Escalation rules and captured leads for Sim owners."""

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import AdminAuth, DbSession
from app.models.escalation import CaptureStatus, ConversationCapture, EscalationRule
from app.services.escalation import EscalationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/advisors/{advisor_id}", tags=["Escalation"])


# =============================================================================
# Pydantic Models
# =============================================================================


class EscalationRulesUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    score_threshold: int | None = Field(None, ge=1)
    message_count_threshold: int | None = Field(None, ge=1)
    urgency_keywords: list[str] | None = None
    value_keywords: list[str] | None = None
    vip_keywords: list[str] | None = None
    custom_keywords: list[str] | None = None
    contact_capture_enabled: bool | None = None
    contact_capture_message: str | None = None
    is_active: bool | None = None


class EscalationRulesResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    advisor_id: uuid.UUID
    score_threshold: int
    message_count_threshold: int
    urgency_keywords: list[str]
    value_keywords: list[str]
    vip_keywords: list[str]
    custom_keywords: list[str]
    contact_capture_enabled: bool
    contact_capture_message: str
    is_active: bool
    updated_at: datetime | None = None


class CaptureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    conversation_id: uuid.UUID
    email: str | None = None
    phone: str | None = None
    name: str | None = None
    trigger_reason: str
    conversation_score: int
    message_count: int
    status: CaptureStatus
    notes: str | None = None
    created_at: datetime


class CaptureStatusUpdate(BaseModel):
    status: CaptureStatus
    notes: str | None = None


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/escalation-rules", response_model=EscalationRulesResponse)
async def get_escalation_rules(
    advisor_id: uuid.UUID,
    db: DbSession,
    _auth: AdminAuth,
) -> EscalationRule:
    """Get the Sim's active escalation rules."""
    rules = await EscalationService(db).get_rules(advisor_id)
    if rules is None:
        raise HTTPException(status_code=404, detail="No active escalation rules")
    return rules


@router.put("/escalation-rules", response_model=EscalationRulesResponse)
async def update_escalation_rules(
    advisor_id: uuid.UUID,
    payload: EscalationRulesUpdate,
    db: DbSession,
    _auth: AdminAuth,
) -> EscalationRule:
    """Create or update the Sim's escalation rules."""
    return await EscalationService(db).upsert_rules(
        advisor_id, payload.model_dump(exclude_none=True)
    )


@router.get("/captures", response_model=list[CaptureResponse])
async def list_captures(
    advisor_id: uuid.UUID,
    db: DbSession,
    _auth: AdminAuth,
) -> list[ConversationCapture]:
    """Leads captured from escalated conversations, newest first."""
    return await EscalationService(db).list_captures(advisor_id)


@router.patch("/captures/{capture_id}")
async def update_capture_status(
    advisor_id: uuid.UUID,
    capture_id: uuid.UUID,
    payload: CaptureStatusUpdate,
    db: DbSession,
    _auth: AdminAuth,
) -> dict:
    """Move a capture to contacted, converted or archived."""
    updated = await EscalationService(db).update_capture_status(
        capture_id, payload.status, payload.notes
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Capture not found")

    logger.info(f"Capture {capture_id} of advisor {advisor_id} set to {payload.status.value}")
    return {"success": True, "id": str(capture_id), "status": payload.status.value}
