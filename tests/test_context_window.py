from datetime import datetime

import pytest

from chatcollab.schemas import ChatMessage
from chatcollab.services.ai import build_conversation_history
from chatcollab.services.context_window import build_window, estimate_tokens

NOW = datetime(2024, 5, 1, 12, 0, 0)


def msg(idx, chars, role="user", streaming=False):
    return ChatMessage(id=f"m{idx}", role=role, content="x" * chars, timestamp=NOW, is_streaming=streaming)


@pytest.mark.parametrize("text,expected", [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)])
def test_estimate_tokens(text, expected):
    assert estimate_tokens(text) == expected


def test_keeps_most_recent_suffix_within_budget():
    messages = [msg(i, 40) for i in range(5)]

    window = build_window(messages, max_tokens=25)

    assert [m.id for m in window.messages] == ["m3", "m4"]
    assert window.current_tokens == 20
    assert window.current_tokens <= window.max_tokens


def test_stops_at_first_overflow():
    messages = [msg(0, 16), msg(1, 160), msg(2, 16)]

    window = build_window(messages, max_tokens=10)

    assert [m.id for m in window.messages] == ["m2"]


def test_system_message_prepended_when_it_fits():
    messages = [msg("s", 8, role="system")] + [msg(i, 40) for i in range(5)]

    window = build_window(messages, max_tokens=25)

    assert [m.id for m in window.messages] == ["ms", "m3", "m4"]
    assert window.current_tokens == 22


def test_system_message_dropped_when_it_does_not_fit():
    messages = [msg("s", 40, role="system")] + [msg(i, 40) for i in range(5)]

    window = build_window(messages, max_tokens=25)

    assert [m.id for m in window.messages] == ["m3", "m4"]


def test_everything_fits():
    messages = [msg("s", 8, role="system"), msg(0, 8), msg(1, 8, role="assistant")]

    window = build_window(messages, max_tokens=100)

    assert window.messages == messages
    assert window.current_tokens == 6


def test_empty_history():
    window = build_window([], max_tokens=10)
    assert window.messages == []
    assert window.current_tokens == 0


def test_conversation_history_leads_with_dated_system_prompt():
    history = [msg(0, 12), msg(1, 12, role="assistant"), msg(2, 0, role="assistant", streaming=True)]

    conversation, window = build_conversation_history(history, NOW, max_tokens=8000)

    assert conversation[0]["role"] == "system"
    assert "2024-05-01" in conversation[0]["content"]
    assert [c["role"] for c in conversation[1:]] == ["user", "assistant"]
    assert window.current_tokens <= 8000
