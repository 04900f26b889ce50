"""Tests for Sim chat: retrieval, escalation and reply storage."""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.llm import LLMResponseError
from app.models.conversation import Message, MessageRole
from app.models.escalation import ConversationCapture
from app.services.chat import ChatService, ConversationNotFoundError


def _rules(**overrides) -> SimpleNamespace:
    values = {
        "score_threshold": 5,
        "message_count_threshold": 10,
        "urgency_keywords": [],
        "value_keywords": ["pricing"],
        "vip_keywords": [],
        "custom_keywords": [],
        "contact_capture_enabled": True,
        "contact_capture_message": "Could you share your email?",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def conversation(db) -> SimpleNamespace:
    conv = SimpleNamespace(
        id=uuid.uuid4(),
        advisor_id=uuid.uuid4(),
        advisor=SimpleNamespace(prompt="You are Ada, a pricing expert."),
    )
    db.get.return_value = conv
    return conv


@pytest.fixture
def llm() -> MagicMock:
    client = MagicMock()
    client.chat_completion = AsyncMock(return_value={"content": "Plans start at $10.", "finish_reason": "stop", "usage": {}})
    return client


@pytest.fixture
def embeddings() -> MagicMock:
    service = MagicMock()
    service.generate_embedding = AsyncMock(return_value=[0.1, 0.2])
    service.search_advisor_embeddings = AsyncMock(return_value=[{"chunk_text": "Basic plan costs $10 a month."}])
    return service


def _history(*pairs) -> list[SimpleNamespace]:
    return [SimpleNamespace(role=role, content=content) for role, content in pairs]


def _added(db, cls) -> list:
    return [call.args[0] for call in db.add.call_args_list if isinstance(call.args[0], cls)]


def _system_prompt(llm) -> str:
    return llm.chat_completion.await_args.kwargs["messages"][0]["content"]


class TestRespond:
    """Tests for one chat turn."""

    @pytest.mark.asyncio
    async def test_escalating_message(self, db, make_result, conversation, llm, embeddings):
        db.execute.side_effect = [
            make_result(scalar=_rules()),
            make_result(scalar=2),
            make_result(rows=_history((MessageRole.USER, "What is your pricing?"))),
        ]
        service = ChatService(db, llm=llm, embeddings=embeddings)

        result = await service.respond(conversation.id, "What is your pricing?")

        assert result["message"] == "Plans start at $10."
        assert result["conversationId"] == str(conversation.id)
        assert result["contextUsed"] is True
        assert result["escalated"] is True
        assert result["analysis"]["score"] == 5
        assert result["analysis"]["intent"] == "sales_inquiry"

        prompt = _system_prompt(llm)
        assert prompt.startswith("You are Ada, a pricing expert.")
        assert "Basic plan costs $10 a month." in prompt
        # Contact capture is only requested once the message count threshold is hit
        assert "Could you share your email?" not in prompt

        user_msg, reply = _added(db, Message)
        assert user_msg.role == MessageRole.USER
        assert user_msg.score == 5
        assert user_msg.metadata_["keywords_detected"] == ["pricing"]
        assert reply.role == MessageRole.ASSISTANT
        assert reply.content == "Plans start at $10."
        assert reply.intent == "response"

        (capture,) = _added(db, ConversationCapture)
        assert capture.conversation_id == conversation.id
        assert capture.advisor_id == conversation.advisor_id
        assert capture.conversation_score == 5
        assert capture.message_count == 2

    @pytest.mark.asyncio
    async def test_message_count_threshold_requests_contact(self, db, make_result, conversation, llm, embeddings):
        db.execute.side_effect = [
            make_result(scalar=_rules()),
            make_result(scalar=10),
            make_result(rows=[]),
        ]
        service = ChatService(db, llm=llm, embeddings=embeddings)

        result = await service.respond(conversation.id, "thanks")

        assert result["escalated"] is True
        assert result["analysis"]["trigger_reason"] == "Message count threshold reached: 10 messages"
        prompt = _system_prompt(llm)
        assert "Message count threshold reached: 10 messages" in prompt
        assert "Could you share your email?" in prompt

    @pytest.mark.asyncio
    async def test_first_message_does_not_hit_zero_count_threshold(
        self, db, make_result, conversation, llm, embeddings
    ):
        db.execute.side_effect = [
            make_result(scalar=_rules(message_count_threshold=0)),
            make_result(scalar=0),
            make_result(rows=[]),
        ]
        service = ChatService(db, llm=llm, embeddings=embeddings)

        result = await service.respond(conversation.id, "thanks")

        assert result["escalated"] is False
        assert result["analysis"]["trigger_reason"] is None
        assert _added(db, ConversationCapture) == []

    @pytest.mark.asyncio
    async def test_no_rules_means_no_analysis(self, db, make_result, conversation, llm, embeddings):
        db.execute.side_effect = [
            make_result(scalar=None),
            make_result(scalar=50),
            make_result(rows=[]),
        ]
        embeddings.search_advisor_embeddings.return_value = []
        service = ChatService(db, llm=llm, embeddings=embeddings)

        result = await service.respond(conversation.id, "pricing?", prompt_override="Be terse.")

        assert result["analysis"] is None
        assert result["escalated"] is False
        assert result["contextUsed"] is False
        assert _system_prompt(llm) == "Be terse."
        assert _added(db, ConversationCapture) == []
        user_msg = _added(db, Message)[0]
        assert user_msg.metadata_ == {}

    @pytest.mark.asyncio
    async def test_retrieval_failure_is_tolerated(self, db, make_result, conversation, llm, embeddings):
        db.execute.side_effect = [make_result(scalar=None), make_result(scalar=0), make_result(rows=[])]
        embeddings.generate_embedding.side_effect = RuntimeError("embeddings down")
        service = ChatService(db, llm=llm, embeddings=embeddings)

        result = await service.respond(conversation.id, "hello")

        assert result["contextUsed"] is False
        assert result["message"] == "Plans start at $10."

    @pytest.mark.asyncio
    async def test_history_is_sent_after_system_prompt(self, db, make_result, conversation, llm, embeddings):
        db.execute.side_effect = [
            make_result(scalar=None),
            make_result(scalar=2),
            make_result(rows=_history(
                (MessageRole.USER, "hi"),
                (MessageRole.ASSISTANT, "hello!"),
                (MessageRole.USER, "pricing?"),
            )),
        ]
        service = ChatService(db, llm=llm, embeddings=embeddings)

        await service.respond(conversation.id, "pricing?")

        messages = llm.chat_completion.await_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[-1]["content"] == "pricing?"

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, db, llm, embeddings):
        db.get.return_value = None
        service = ChatService(db, llm=llm, embeddings=embeddings)

        with pytest.raises(ConversationNotFoundError):
            await service.respond(uuid.uuid4(), "hello")

        llm.chat_completion.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_reply(self, db, make_result, conversation, llm, embeddings):
        db.execute.side_effect = [make_result(scalar=None), make_result(scalar=0), make_result(rows=[])]
        llm.chat_completion.return_value = {"content": None, "finish_reason": "length", "usage": {}}
        service = ChatService(db, llm=llm, embeddings=embeddings)

        with pytest.raises(LLMResponseError):
            await service.respond(conversation.id, "hello")


class TestCompleteForAgent:

    @pytest.mark.asyncio
    async def test_persona_prompt(self, db, llm, embeddings):
        service = ChatService(db, llm=llm, embeddings=embeddings)

        reply = await service.complete_for_agent(
            [{"role": "user", "content": "Explain fractions"}],
            {"name": "Tutor Tim", "type": "Tutor", "subject": "math", "gradeLevel": "5th grade"},
        )

        assert reply == "Plans start at $10."
        prompt = _system_prompt(llm)
        assert prompt.startswith("You are Tutor Tim, a tutor specializing in math for 5th grade students.")
        assert "Stay in character as Tutor Tim" in prompt
        db.add.assert_not_called()
