"""Sim chat endpoints."""

import logging
import uuid
from typing import Any, Literal

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from app.api.deps import DbSession
from app.core.llm import LLMError, LLMRateLimitError
from app.services.analytics import log_event
from app.services.chat import ChatService, ConversationNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["Chat"])


# =============================================================================
# Pydantic Models
# =============================================================================


class ChatRequest(BaseModel):
    """One user turn in a stored conversation."""

    conversation_id: uuid.UUID = Field(alias="conversationId")
    user_message: str = Field(alias="userMessage", min_length=1)
    prompt_override: str | None = Field(None, alias="tutorPrompt")

    model_config = {"populate_by_name": True}


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AgentPersona(BaseModel):
    """Ad-hoc persona for stateless completions."""

    name: str = Field(min_length=1)
    type: str = "assistant"
    subject: str | None = None
    gradeLevel: str | None = None
    description: str | None = None
    prompt: str | None = None
    teachingStyle: str | None = None
    learningObjective: str | None = None


class AgentChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    agent: AgentPersona


def _llm_http_error(e: LLMError) -> HTTPException:
    if isinstance(e, LLMRateLimitError):
        return HTTPException(status_code=429, detail="Rate limit exceeded, please retry shortly")
    return HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Endpoints
# =============================================================================


@router.post("")
async def chat(payload: ChatRequest, db: DbSession) -> dict[str, Any]:
    """Answer a user message with knowledge context and escalation scoring."""
    service = ChatService(db)
    try:
        result = await service.respond(
            payload.conversation_id,
            payload.user_message,
            prompt_override=payload.prompt_override,
        )
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LLMError as e:
        logger.error(f"Chat completion failed for conversation {payload.conversation_id}: {e}")
        raise _llm_http_error(e)

    await log_event(
        db,
        "chat_message",
        {
            "conversation_id": str(payload.conversation_id),
            "context_used": result["contextUsed"],
            "escalated": result["escalated"],
        },
    )
    return result


@router.post("/agent")
async def chat_with_agent(payload: AgentChatRequest, db: DbSession) -> dict[str, Any]:
    """Stateless completion as an ad-hoc agent persona."""
    service = ChatService(db)
    try:
        reply = await service.complete_for_agent(
            [m.model_dump() for m in payload.messages],
            payload.agent.model_dump(exclude_none=True),
        )
    except LLMError as e:
        logger.error(f"Agent completion failed for {payload.agent.name}: {e}")
        raise _llm_http_error(e)

    return {"message": reply}
