import enum
from sqlalchemy import Column, DateTime, String

from .base import Base, utcnow


class InviteStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class ChatInvite(Base):
    """Directed, email-scoped offer of collaborator access.

    ``chat_id`` is a weak reference: the chat may have been deleted.
    """

    __tablename__ = "chat_invites"

    id = Column(String(64), primary_key=True)
    chat_id = Column(String(64), nullable=False, index=True)
    inviter_id = Column(String(255), nullable=False)
    inviter_name = Column(String(255), nullable=False, default="Unknown")
    invitee_email = Column(String(255), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=InviteStatus.PENDING.value)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
