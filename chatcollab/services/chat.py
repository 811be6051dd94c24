"""Chat loading, access gating and message (de)serialization."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from chatcollab.core.errors import Forbidden, NotFound
from chatcollab.core.logging import get_logger
from chatcollab.core.security import Actor
from chatcollab.models import Chat
from chatcollab.schemas import ChatMessage
from chatcollab.services import access

logger = get_logger(__name__)


def get_chat_with_access(
    db: Session,
    chat_id: str,
    actor: Optional[Actor],
    write: bool = False,
    now: Optional[datetime] = None,
) -> Chat:
    """
    Return the chat if the actor may read it (and write it, when ``write``).
    Unreadable chats raise NotFound so their existence is not revealed;
    readable but read-only chats raise Forbidden for writes.
    """
    # turns finish in their own session; never trust a cached transcript
    chat = db.get(Chat, chat_id, populate_existing=True)
    actor_id = actor.id if actor else None
    if chat is None or not access.can_read(chat, actor_id, now):
        logger.info("chat_access_denied", chat_id=chat_id, actor_id=actor_id, exists=chat is not None)
        raise NotFound("Chat not found")
    if write and not access.can_write(chat, actor_id):
        logger.info("chat_write_denied", chat_id=chat_id, actor_id=actor_id)
        raise Forbidden("You have read-only access to this chat")
    return chat


def load_messages(chat: Chat) -> List[ChatMessage]:
    return [ChatMessage.model_validate(item) for item in (chat.messages or [])]


def store_messages(chat: Chat, messages: List[ChatMessage], now: Optional[datetime] = None) -> None:
    """Replace the whole transcript (last writer wins)."""
    chat.messages = [m.model_dump(mode="json") for m in messages]
    chat.touch(now)


def find_message(messages: List[ChatMessage], message_id: str) -> int:
    for index, message in enumerate(messages):
        if message.id == message_id:
            return index
    raise NotFound("Message not found")


def streaming_placeholders(messages: List[ChatMessage]) -> List[ChatMessage]:
    return [m for m in messages if m.role == "assistant" and m.is_streaming]
