"""Sim chat: knowledge retrieval, escalation scoring and LLM response.

One call handles one user turn of a stored conversation:

1. Pull knowledge-base context for the message (best effort)
2. Score the message against the Sim's escalation rules
3. Save the user message with its analysis
4. Generate the reply from the first messages of the conversation
5. Save the reply and, when escalated, record a lead capture
"""

import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.llm import OpenAIClient, LLMResponseError, get_llm_client
from app.core.prompts import (
    build_agent_prompt,
    build_sim_prompt,
    with_contact_capture,
    with_knowledge_context,
)
from app.models.conversation import Conversation, Message, MessageRole, UrgencyLevel
from app.services.embedding import EmbeddingService
from app.services.escalation import ConversationAnalysis, EscalationService, analyze_message

logger = logging.getLogger(__name__)

# Messages sent to the model, oldest first
HISTORY_LIMIT = 10


class ConversationNotFoundError(Exception):
    """Raised when the conversation id does not exist."""
    pass


class ChatService:
    """Answer user messages on behalf of a Sim."""

    def __init__(
        self,
        db: AsyncSession,
        llm: OpenAIClient | None = None,
        embeddings: EmbeddingService | None = None,
    ) -> None:
        self._db = db
        self._llm = llm
        self._embeddings = embeddings or EmbeddingService(db)
        self._escalation = EscalationService(db)

    @property
    def llm(self) -> OpenAIClient:
        if self._llm is None:
            self._llm = get_llm_client()
        return self._llm

    async def respond(
        self,
        conversation_id: uuid.UUID,
        user_message: str,
        prompt_override: str | None = None,
    ) -> dict[str, Any]:
        """Process one user turn and return the Sim's reply.

        Args:
            conversation_id: Stored conversation to continue
            user_message: Text the user sent
            prompt_override: System prompt replacing the Sim's own

        Returns:
            dict with message, conversationId, contextUsed, analysis, escalated

        Raises:
            ConversationNotFoundError: If the conversation does not exist
            LLMError: If the model call fails
        """
        conversation = await self._db.get(Conversation, conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")

        advisor_id = conversation.advisor_id
        logger.info(f"Processing chat for conversation {conversation_id} (advisor {advisor_id})")

        context_chunks = await self._retrieve_context(advisor_id, user_message)

        rules = await self._escalation.get_rules(advisor_id)
        analysis: ConversationAnalysis | None = None
        if rules is not None:
            analysis = analyze_message(user_message, rules)
            logger.debug(f"Message analysis: {analysis}")

        message_count = await self._count_messages(conversation_id)

        count_threshold_hit = (
            rules is not None and message_count > 0 and message_count >= rules.message_count_threshold
        )
        if count_threshold_hit and analysis is not None:
            analysis.should_escalate = True
            analysis.trigger_reason = f"Message count threshold reached: {message_count} messages"

        self._db.add(Message(
            conversation_id=conversation_id,
            role=MessageRole.USER,
            content=user_message,
            score=analysis.score if analysis else 0,
            intent=analysis.intent if analysis else "general",
            urgency_level=analysis.urgency_level if analysis else UrgencyLevel.LOW,
            metadata_={
                "keywords_detected": analysis.keywords_detected,
                "should_escalate": analysis.should_escalate,
                "trigger_reason": analysis.trigger_reason,
            } if analysis else {},
        ))
        await self._db.flush()

        history = await self._recent_messages(conversation_id)

        advisor = conversation.advisor
        system_prompt = build_sim_prompt(advisor.prompt if advisor else None, prompt_override)
        system_prompt = with_knowledge_context(system_prompt, context_chunks)
        escalated = bool(analysis and analysis.should_escalate)
        if escalated and rules.contact_capture_enabled and count_threshold_hit:
            system_prompt = with_contact_capture(
                system_prompt, analysis.trigger_reason, rules.contact_capture_message
            )

        response = await self.llm.chat_completion(
            messages=[{"role": "system", "content": system_prompt}, *history],
        )
        reply = response["content"]
        if not reply:
            raise LLMResponseError("Empty response from OpenAI")

        self._db.add(Message(
            conversation_id=conversation_id,
            role=MessageRole.ASSISTANT,
            content=reply,
            score=0,
            intent="response",
            urgency_level=UrgencyLevel.LOW,
            metadata_={},
        ))
        await self._db.flush()

        if escalated:
            await self._record_capture(
                conversation_id, advisor_id, analysis, message_count
            )

        return {
            "message": reply,
            "conversationId": str(conversation_id),
            "contextUsed": bool(context_chunks),
            "analysis": analysis.to_dict() if analysis else None,
            "escalated": escalated,
        }

    async def complete_for_agent(
        self,
        messages: list[dict[str, str]],
        agent: dict[str, Any],
    ) -> str:
        """Stateless completion in the voice of an ad-hoc agent persona.

        Nothing is stored; the caller owns the message history.
        """
        system_prompt = build_agent_prompt(agent)
        response = await self.llm.chat_completion(
            messages=[{"role": "system", "content": system_prompt}, *messages],
        )
        if not response["content"]:
            raise LLMResponseError("Empty response from OpenAI")
        return response["content"]

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _retrieve_context(self, advisor_id: uuid.UUID, query: str) -> list[str]:
        """Embed the query and fetch matching knowledge-base chunks."""
        try:
            query_embedding = await self._embeddings.generate_embedding(query)
            matches = await self._embeddings.search_advisor_embeddings(advisor_id, query_embedding)
        except Exception as e:
            logger.warning(f"Failed to retrieve context, continuing without it: {e}")
            return []

        if matches:
            logger.info(f"Found {len(matches)} relevant context chunks")
        return [match["chunk_text"] for match in matches]

    async def _count_messages(self, conversation_id: uuid.UUID) -> int:
        result = await self._db.execute(
            select(func.count(Message.id)).where(Message.conversation_id == conversation_id)
        )
        return result.scalar() or 0

    async def _recent_messages(self, conversation_id: uuid.UUID) -> list[dict[str, str]]:
        result = await self._db.execute(
            select(Message.role, Message.content)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc())
            .limit(HISTORY_LIMIT)
        )
        return [{"role": row.role.value, "content": row.content} for row in result.all()]

    async def _record_capture(
        self,
        conversation_id: uuid.UUID,
        advisor_id: uuid.UUID,
        analysis: ConversationAnalysis,
        message_count: int,
    ) -> None:
        try:
            async with self._db.begin_nested():
                await self._escalation.create_capture(
                    conversation_id=conversation_id,
                    advisor_id=advisor_id,
                    trigger_reason=analysis.trigger_reason or "Unknown trigger",
                    conversation_score=analysis.score,
                    message_count=message_count,
                )
        except Exception as e:
            # Capture is best effort
            logger.error(f"Error creating conversation capture: {e}")
