"""System prompt and provider-facing conversation building."""

from datetime import datetime
from typing import List, Sequence, Tuple

from chatcollab.schemas import ChatMessage
from chatcollab.services.context_window import ContextWindow, build_window

FALLBACK_REPLY = "Sorry, I encountered an error. Please try again."
TIMEOUT_REPLY = "Sorry, the response took too long. Please try again."

# System prompt and conversation building are pure functions; no DB here.


def build_system_message(now: datetime, memory_context: str = "") -> ChatMessage:
    """Build the system prompt that leads every turn's context."""
    parts = ["You are a helpful assistant in a shared conversation. Answer as concisely as possible."]
    if memory_context:
        parts.append(memory_context.strip())
    parts.append(f"Current date: {now.date().isoformat()}")
    return ChatMessage(id="system", role="system", content="\n\n".join(parts), timestamp=now)


def build_conversation_history(
    history: Sequence[ChatMessage],
    now: datetime,
    max_tokens: int = 8000,
    memory_context: str = "",
) -> Tuple[List[dict], ContextWindow]:
    """Role/content pairs for the provider, bounded by ``max_tokens``.

    Streaming placeholders never reach the provider.
    """
    settled = [m for m in history if not m.is_streaming]
    window = build_window([build_system_message(now, memory_context)] + settled, max_tokens)
    conversation = [{"role": m.role, "content": m.content} for m in window.messages]
    return conversation, window
