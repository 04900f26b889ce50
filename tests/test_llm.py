"""Tests for the OpenAI chat completion client."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.core.llm import LLMError, LLMRateLimitError, LLMResponseError, OpenAIClient


def _client(handler) -> OpenAIClient:
    return OpenAIClient(transport=httpx.MockTransport(handler))


class TestChatCompletion:
    """Tests for request building and error mapping."""

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {"content": "Hi!"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
            })

        async with _client(handler) as client:
            result = await client.chat_completion([{"role": "user", "content": "Hello"}])

        assert result["content"] == "Hi!"
        assert result["finish_reason"] == "stop"
        assert result["usage"]["total_tokens"] == 4
        assert seen["url"].endswith("/chat/completions")
        assert seen["auth"] == "Bearer test-openai-key"
        assert seen["body"]["model"] == "gpt-4o-mini"
        assert seen["body"]["temperature"] == 0.7
        assert seen["body"]["max_tokens"] == 1000

    @pytest.mark.asyncio
    async def test_model_and_temperature_overrides(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        async with _client(handler) as client:
            result = await client.chat_completion(
                [{"role": "user", "content": "Hello"}], model="gpt-4o", temperature=None
            )

        assert seen["body"]["model"] == "gpt-4o"
        assert "temperature" not in seen["body"]
        assert result["usage"]["total_tokens"] == 0

    @pytest.mark.asyncio
    async def test_no_choices(self):
        async with _client(lambda request: httpx.Response(200, json={"choices": []})) as client:
            with pytest.raises(LLMResponseError):
                await client.chat_completion([{"role": "user", "content": "Hello"}])

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="boom")

        async with _client(handler) as client:
            with pytest.raises(LLMError) as exc_info:
                await client.chat_completion([{"role": "user", "content": "Hello"}])

        assert not isinstance(exc_info.value, LLMRateLimitError)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried_then_raised(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(429)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            async with _client(handler) as client:
                with pytest.raises(LLMRateLimitError):
                    await client.chat_completion([{"role": "user", "content": "Hello"}])

        assert len(calls) == 3


class TestClientConfiguration:

    def test_missing_api_key(self):
        with patch("app.core.llm.get_settings") as get_settings:
            get_settings.return_value.openai_api_key = ""
            with pytest.raises(ValueError):
                OpenAIClient()
