"""OpenAI chat completion client.

Async client for the OpenAI Chat Completions API used by Sim chat and
persona completion routes.
"""

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from app.config import get_settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base exception for LLM-related errors."""
    pass


class LLMConnectionError(LLMError):
    """Raised when connection to LLM API fails."""
    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limit is exceeded."""
    pass


class LLMResponseError(LLMError):
    """Raised when LLM returns an invalid or unexpected response."""
    pass


class OpenAIClient:
    """Async client for the OpenAI Chat Completions API.

    Usage:
        client = OpenAIClient()
        response = await client.chat_completion(
            messages=[{"role": "user", "content": "Hello"}]
        )
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialize the client with settings from config.

        Args:
            transport: Optional httpx transport (used by tests).
        """
        settings = get_settings()

        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is not configured")

        self._api_key = settings.openai_api_key
        self._model = settings.chat_model
        self._base_url = settings.openai_base_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=60.0, transport=transport)

    @property
    def model(self) -> str:
        """Get the default model name."""
        return self._model

    @retry(
        retry=retry_if_exception_type((LLMConnectionError, LLMRateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def chat_completion(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float | None = 0.7,
        max_tokens: int = 1000,
    ) -> dict[str, Any]:
        """Send a chat completion request.

        Args:
            messages: List of message objects with role and content.
            model: Model override; defaults to the configured chat model.
            temperature: Sampling temperature, or None to use the model default.
            max_tokens: Maximum tokens in the response.

        Returns:
            dict with the structure:
            {
                "content": str | None,
                "finish_reason": str,
                "usage": dict,
            }

        Raises:
            LLMConnectionError: If the API cannot be reached after retries.
            LLMRateLimitError: If the rate limit is still exceeded after retries.
            LLMResponseError: If the API returns no choices or malformed JSON.
            LLMError: For other API errors.
        """
        request_body: dict[str, Any] = {
            "model": model or self._model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            request_body["temperature"] = temperature

        logger.debug(
            "Sending chat completion request",
            extra={"model": request_body["model"], "message_count": len(messages)},
        )

        try:
            response = await self._client.post(
                f"{self._base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=request_body,
            )
        except httpx.ConnectError as e:
            logger.error(f"Connection error to OpenAI API: {e}")
            raise LLMConnectionError(f"Failed to connect to OpenAI API: {e}") from e
        except httpx.TimeoutException as e:
            logger.error(f"Timeout connecting to OpenAI API: {e}")
            raise LLMConnectionError(f"Timeout connecting to OpenAI API: {e}") from e

        if response.status_code == 429:
            raise LLMRateLimitError("OpenAI API rate limit exceeded")

        if response.status_code != 200:
            logger.error(f"OpenAI API error: {response.status_code} - {response.text}")
            raise LLMError(f"OpenAI API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise LLMResponseError(f"Invalid JSON from OpenAI API: {e}") from e

        choices = data.get("choices") or []
        if not choices:
            raise LLMResponseError("No response from OpenAI")

        choice = choices[0]
        result = {
            "content": choice.get("message", {}).get("content"),
            "finish_reason": choice.get("finish_reason", "stop"),
            "usage": data.get("usage", {
                "prompt_tokens": 0,
                "completion_tokens": 0,
                "total_tokens": 0,
            }),
        }

        logger.debug(
            "Chat completion successful",
            extra={
                "finish_reason": result["finish_reason"],
                "total_tokens": result["usage"].get("total_tokens", 0),
            },
        )
        return result

    async def close(self) -> None:
        """Close the client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "OpenAIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


# Singleton instance for application-wide use
_client_instance: OpenAIClient | None = None


def get_llm_client() -> OpenAIClient:
    """Get or create the global LLM client instance."""
    global _client_instance
    if _client_instance is None:
        _client_instance = OpenAIClient()
    return _client_instance


async def shutdown_llm_client() -> None:
    """Shutdown the global LLM client instance.

    Call this during application shutdown to properly release resources.
    """
    global _client_instance
    if _client_instance is not None:
        await _client_instance.close()
        _client_instance = None
