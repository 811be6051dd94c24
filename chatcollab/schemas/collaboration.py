from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr


class ShareSettingsUpdate(BaseModel):
    is_public: bool = False
    allow_editing: bool = False
    allow_invites: bool = False
    expires_at: Optional[datetime] = None


class ShareResponse(BaseModel):
    share_link: str
    share_settings: dict


class InviteCreate(BaseModel):
    email: EmailStr
    role: Literal["viewer", "editor"] = "viewer"


class InviteAction(BaseModel):
    action: str


class InviteResponse(BaseModel):
    id: str
    chat_id: str
    inviter_id: str
    inviter_name: str
    invitee_email: str
    role: str
    status: str
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True


class InviteDetails(BaseModel):
    invite: InviteResponse
    chat_title: str
    inviter_name: str


class CollaboratorRoleUpdate(BaseModel):
    role: Literal["viewer", "editor"]


class ActivityUpdate(BaseModel):
    activity: Literal["join", "leave", "typing", "stop_typing"]


class ActiveUserResponse(BaseModel):
    user_id: str
    name: str
    avatar: Optional[str] = None
    last_seen: datetime
    is_typing: bool = False

    class Config:
        from_attributes = True
