import enum
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, JSON, String, UniqueConstraint
from sqlalchemy.ext.mutable import MutableDict, MutableList
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class CollaboratorRole(str, enum.Enum):
    VIEWER = "viewer"
    EDITOR = "editor"


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Chat(Base):
    """The shared conversation document.

    ``messages`` and ``share_settings`` are stored whole; a persist replaces
    the previous list, so concurrent edits resolve last-writer-wins.
    """

    __tablename__ = "chats"

    id = Column(String(64), primary_key=True, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    owner_email = Column(String(255), nullable=False, default="")
    title = Column(String(255), nullable=False, default="New Chat")
    messages = Column(MutableList.as_mutable(JSON), nullable=False, default=list)
    is_shared = Column(Boolean, nullable=False, default=False)
    share_settings = Column(MutableDict.as_mutable(JSON), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    collaborators = relationship(
        "ChatCollaborator",
        back_populates="chat",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ChatCollaborator.joined_at",
    )

    def touch(self, now=None) -> None:
        self.updated_at = now or utcnow()

    def collaborator(self, user_id: str):
        for collab in self.collaborators or []:
            if collab.user_id == user_id:
                return collab
        return None


class ChatCollaborator(Base):
    __tablename__ = "chat_collaborators"
    __table_args__ = (UniqueConstraint("chat_id", "user_id", name="uq_chat_collaborator"),)

    id = Column(String(64), primary_key=True)
    chat_id = Column(String(64), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="Unknown")
    email = Column(String(255), nullable=False, default="")
    avatar = Column(String(1024), nullable=True)
    role = Column(String(20), nullable=False, default=CollaboratorRole.EDITOR.value)
    joined_at = Column(DateTime, default=utcnow)
    last_active = Column(DateTime, nullable=True)
    is_online = Column(Boolean, nullable=False, default=False)

    chat = relationship("Chat", back_populates="collaborators")
