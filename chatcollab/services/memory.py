"""Per-user memory folded into the system prompt of that user's turns."""

import uuid
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatcollab.core.errors import NotFound, ValidationFailure
from chatcollab.core.logging import get_logger
from chatcollab.models import UserMemory, utcnow

logger = get_logger(__name__)


def build_memory_context(memories: Sequence[UserMemory]) -> str:
    if not memories:
        return ""
    lines = [f"{m.key}: {m.value} (Context: {m.context or ''})" for m in memories]
    return "User Memory Context:\n" + "\n".join(lines) + "\n\n"


class MemoryProvider:
    """Supplies the memory text for the actor opening a turn.

    The base provider remembers nothing.
    """

    def context_for(self, db: Session, user_id: str) -> str:
        return ""


class StoredMemoryProvider(MemoryProvider):
    """Memories kept in the ``user_memories`` table, one row per (user, key)."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def list_memories(self, db: Session, user_id: str) -> List[UserMemory]:
        return (
            db.query(UserMemory)
            .filter(UserMemory.user_id == user_id)
            .order_by(UserMemory.created_at, UserMemory.key)
            .all()
        )

    def store_memory(
        self,
        db: Session,
        user_id: str,
        key: str,
        value: str,
        context: Optional[str] = None,
    ) -> UserMemory:
        key = (key or "").strip()
        if not key or not value:
            raise ValidationFailure("Memory key and value are required")
        now = self.clock()
        memory = self._find(db, user_id, key)
        if memory is None:
            memory = UserMemory(
                id=f"mem_{uuid.uuid4().hex}",
                user_id=user_id,
                key=key,
                value=value,
                context=context or "",
                created_at=now,
                updated_at=now,
            )
            db.add(memory)
            try:
                db.commit()
                return memory
            except IntegrityError:
                # another request stored the same key first
                db.rollback()
                memory = self._find(db, user_id, key)
        memory.value = value
        memory.context = context or ""
        memory.updated_at = now
        db.commit()
        return memory

    def delete_memory(self, db: Session, user_id: str, key: str) -> None:
        memory = self._find(db, user_id, key)
        if memory is None:
            raise NotFound("Memory not found")
        db.delete(memory)
        db.commit()

    def context_for(self, db: Session, user_id: str) -> str:
        memories = self.list_memories(db, user_id)
        if memories:
            logger.debug("memory_context_built", user_id=user_id, count=len(memories))
        return build_memory_context(memories)

    def _find(self, db: Session, user_id: str, key: str) -> Optional[UserMemory]:
        return db.query(UserMemory).filter(UserMemory.user_id == user_id, UserMemory.key == key).first()
