from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class Attachment(BaseModel):
    """Reference to a stored blob; the URL comes from blob storage."""

    id: str
    type: Literal["image", "document"]
    url: str
    name: str
    size: int = Field(ge=0)
    mime_type: str


class ChatMessage(BaseModel):
    id: str
    role: Literal["user", "assistant", "system"]
    content: str = ""
    timestamp: datetime
    attachments: List[Attachment] = []
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    is_streaming: bool = False


class ChatCreate(BaseModel):
    id: Optional[str] = Field(None, min_length=1, max_length=64)
    title: Optional[str] = None


class ChatUpdate(BaseModel):
    title: Optional[str] = None
    messages: Optional[List[ChatMessage]] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        return value or None


class MessageCreate(BaseModel):
    content: str = ""
    attachments: List[Attachment] = []
    model: Optional[str] = None


class MessageEdit(BaseModel):
    content: str
    model: Optional[str] = None


class RegenerateRequest(BaseModel):
    model: Optional[str] = None


class ChatResponse(BaseModel):
    id: str
    title: str
    owner_id: str
    is_shared: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CollaboratorResponse(BaseModel):
    user_id: str
    name: str
    email: Optional[str] = None
    avatar: Optional[str] = None
    role: str
    joined_at: Optional[datetime] = None
    last_active: Optional[datetime] = None
    is_online: Optional[bool] = None

    class Config:
        from_attributes = True


class ShareSettingsResponse(BaseModel):
    is_public: bool = False
    allow_editing: bool = False
    allow_invites: bool = False
    expires_at: Optional[datetime] = None
    share_link: Optional[str] = None


class ChatWithMessages(ChatResponse):
    messages: List[ChatMessage]
    collaborators: List[CollaboratorResponse] = []
    share_settings: Optional[ShareSettingsResponse] = None
    my_role: str


class SharedChatResponse(BaseModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    owner_id: str
    my_role: str
