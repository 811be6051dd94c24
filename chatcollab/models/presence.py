from sqlalchemy import Boolean, Column, DateTime, String

from .base import Base, utcnow


class PresenceRecord(Base):
    """One activity marker per (chat, user); freshness is judged at query time."""

    __tablename__ = "chat_presence"

    chat_id = Column(String(64), primary_key=True)
    user_id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False, default="Unknown")
    avatar = Column(String(1024), nullable=True)
    last_seen = Column(DateTime, nullable=False, default=utcnow, index=True)
    is_typing = Column(Boolean, nullable=False, default=False)
