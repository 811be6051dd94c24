from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint

from .base import Base, utcnow


class UserMemory(Base):
    """A keyed fact about one user, folded into that user's system prompt."""

    __tablename__ = "user_memories"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=False)
    context = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "key", name="uq_user_memory_key"),)
