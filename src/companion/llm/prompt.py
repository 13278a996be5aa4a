"""Prompt builder for the companion."""

from datetime import datetime
from typing import Any

SYSTEM_PROMPT_BASE = """You are {companion_name}, a warm and caring companion who talks with the user every day.

Guidelines:
- Tone: affectionate, attentive and supportive.
- Style: concise. Keep replies short and conversational.
- Memory: use what you know about the user naturally, without listing it back.
- Time: it is currently {local_time}. Greet the user appropriately for the time of day.
- Mood: the user is currently feeling "{mood}". Be extra supportive if they are sad,
  playful if they are happy, calming if they are stressed."""

MEMORY_BLOCK = """
<memory>
What you know about the user:
{facts}
</memory>"""


def build_system_prompt(
    companion_name: str,
    facts: str = "",
    mood: str = "happy",
    now: datetime | None = None,
) -> str:
    """Build the system prompt with persona, mood and memory.

    Args:
        companion_name: Name the companion answers to.
        facts: Comma-joined fact corpus.
        mood: Current mood tag of the user.
        now: Local time to mention, defaults to now.

    Returns:
        Complete system prompt string.
    """
    now = now or datetime.now()
    prompt = SYSTEM_PROMPT_BASE.format(
        companion_name=companion_name,
        local_time=now.strftime("%H:%M"),
        mood=mood,
    )

    if facts.strip():
        prompt += "\n" + MEMORY_BLOCK.format(facts=facts)

    return prompt


def build_messages(
    system: str,
    message: str,
    history: list[dict[str, str]] | None = None,
) -> list[dict[str, Any]]:
    """Assemble the chat-completions message list."""
    messages: list[dict[str, Any]] = [{"role": "system", "content": system}]
    if history:
        messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    messages.append({"role": "user", "content": message})
    return messages
