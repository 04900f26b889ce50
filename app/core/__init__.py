"""Core utilities for LLM access and prompt assembly.

- OpenAI chat completion client with retry and error taxonomy
- System prompt builders for Sims and stateless agent personas
"""

from app.core.llm import (
    OpenAIClient,
    LLMError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMResponseError,
    get_llm_client,
    shutdown_llm_client,
)
from app.core.prompts import (
    DEFAULT_SIM_PROMPT,
    build_sim_prompt,
    build_agent_prompt,
    with_knowledge_context,
    with_contact_capture,
)

__all__ = [
    # LLM Client
    "OpenAIClient",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMResponseError",
    "get_llm_client",
    "shutdown_llm_client",
    # Prompts
    "DEFAULT_SIM_PROMPT",
    "build_sim_prompt",
    "build_agent_prompt",
    "with_knowledge_context",
    "with_contact_capture",
]
