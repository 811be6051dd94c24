"""SQLAlchemy models."""

from .base import Base, utcnow
from .chat import Chat, ChatCollaborator, CollaboratorRole, MessageRole
from .invite import ChatInvite, InviteStatus
from .memory import UserMemory
from .presence import PresenceRecord

__all__ = [
    "Base",
    "utcnow",
    "Chat",
    "ChatCollaborator",
    "CollaboratorRole",
    "MessageRole",
    "ChatInvite",
    "InviteStatus",
    "UserMemory",
    "PresenceRecord",
]
