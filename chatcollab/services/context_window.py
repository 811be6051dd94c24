"""Trailing-window selection of conversation history under a token budget."""

import math
from dataclasses import dataclass, field
from typing import List, Sequence

from chatcollab.schemas import ChatMessage

CHARS_PER_TOKEN = 4


@dataclass
class ContextWindow:
    max_tokens: int
    current_tokens: int = 0
    messages: List[ChatMessage] = field(default_factory=list)


def estimate_tokens(text: str) -> int:
    # roughly 4 characters per token for English text
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def build_window(messages: Sequence[ChatMessage], max_tokens: int = 8000) -> ContextWindow:
    """Keep the most recent messages that fit ``max_tokens``.

    The walk stops at the first message that would overflow the budget, so the
    result is always a contiguous suffix. A system message that fell outside
    the suffix is prepended when it still fits; otherwise it is dropped.
    """
    window = ContextWindow(max_tokens=max_tokens)
    selected: List[ChatMessage] = []

    for message in reversed(messages):
        cost = estimate_tokens(message.content)
        if window.current_tokens + cost > max_tokens:
            break
        selected.append(message)
        window.current_tokens += cost
    selected.reverse()

    system_message = next((m for m in messages if m.role == "system"), None)
    if system_message is not None and not any(m.role == "system" for m in selected):
        cost = estimate_tokens(system_message.content)
        if window.current_tokens + cost <= max_tokens:
            selected.insert(0, system_message)
            window.current_tokens += cost

    window.messages = selected
    return window
