"""Pydantic request/response schemas."""

from .chat import (
    Attachment,
    ChatMessage,
    ChatCreate,
    ChatUpdate,
    ChatResponse,
    ChatWithMessages,
    CollaboratorResponse,
    MessageCreate,
    MessageEdit,
    RegenerateRequest,
    ShareSettingsResponse,
    SharedChatResponse,
)
from .collaboration import (
    ActiveUserResponse,
    ActivityUpdate,
    CollaboratorRoleUpdate,
    InviteAction,
    InviteCreate,
    InviteDetails,
    InviteResponse,
    ShareResponse,
    ShareSettingsUpdate,
)
from .memory import MemoryCreate, MemoryResponse

__all__ = [
    "Attachment",
    "ChatMessage",
    "ChatCreate",
    "ChatUpdate",
    "ChatResponse",
    "ChatWithMessages",
    "CollaboratorResponse",
    "MessageCreate",
    "MessageEdit",
    "RegenerateRequest",
    "ShareSettingsResponse",
    "SharedChatResponse",
    "ActiveUserResponse",
    "ActivityUpdate",
    "CollaboratorRoleUpdate",
    "InviteAction",
    "InviteCreate",
    "InviteDetails",
    "InviteResponse",
    "ShareResponse",
    "ShareSettingsUpdate",
    "MemoryCreate",
    "MemoryResponse",
]
