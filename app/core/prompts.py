"""System prompt assembly for Sims.

A Sim's behaviour comes from the prompt its creator wrote. This module
layers the runtime additions on top of it: retrieved knowledge-base context
and the contact-capture instruction used when a conversation escalates.
"""

from typing import Any

DEFAULT_SIM_PROMPT = "You are a helpful AI assistant."

KNOWLEDGE_CONTEXT_TEMPLATE = """

Relevant context from your knowledge base:
{context}

Use this context to inform your response when relevant, but don't explicitly mention that you're using a knowledge base."""

CONTACT_CAPTURE_TEMPLATE = """

IMPORTANT: This conversation has been flagged as high-priority ({reason}). After providing a helpful response, please ask for the user's contact information using this exact message: "{message}\""""

AGENT_GUIDELINES = """You should:
- Stay in character as {name}
- Follow the instructions provided
- Be helpful, encouraging, and clear
- Adapt your responses to the person's level
- Ask follow-up questions to check understanding
- Provide examples and explanations when needed

Keep your responses conversational and engaging."""


def build_sim_prompt(advisor_prompt: str | None, override: str | None = None) -> str:
    """Pick the base system prompt: explicit override, the Sim's own, or the default."""
    return override or advisor_prompt or DEFAULT_SIM_PROMPT


def with_knowledge_context(prompt: str, chunks: list[str]) -> str:
    """Append retrieved knowledge-base chunks to a system prompt."""
    if not chunks:
        return prompt
    return prompt + KNOWLEDGE_CONTEXT_TEMPLATE.format(context="\n\n".join(chunks))


def with_contact_capture(prompt: str, reason: str, message: str) -> str:
    """Instruct the model to ask for contact details after answering."""
    return prompt + CONTACT_CAPTURE_TEMPLATE.format(reason=reason, message=message)


def build_agent_prompt(agent: dict[str, Any]) -> str:
    """Build a persona prompt for a stateless agent completion.

    Args:
        agent: Persona fields. ``name`` and ``type`` are required; ``subject``,
            ``gradeLevel``, ``description``, ``prompt``, ``teachingStyle`` and
            ``learningObjective`` are optional.

    Returns:
        The assembled system prompt.
    """
    name = agent["name"]
    header = f"You are {name}, a {str(agent.get('type', 'assistant')).lower()}"
    if agent.get("subject"):
        header += f" specializing in {agent['subject']}"
    if agent.get("gradeLevel"):
        header += f" for {agent['gradeLevel']} students"
    header += "."

    sections = [header]
    if agent.get("description"):
        sections.append(agent["description"])
    if agent.get("prompt"):
        sections.append(f"Instructions: {agent['prompt']}")
    if agent.get("teachingStyle"):
        sections.append(f"Style: {agent['teachingStyle']}")
    if agent.get("learningObjective"):
        sections.append(f"Objective: {agent['learningObjective']}")
    sections.append(AGENT_GUIDELINES.format(name=name))

    return "\n\n".join(sections)
