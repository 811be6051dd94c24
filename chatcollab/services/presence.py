"""Short-lived presence and typing markers."""

import enum
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from chatcollab.core.security import Actor
from chatcollab.models import PresenceRecord, utcnow


class ActivityKind(str, enum.Enum):
    JOIN = "join"
    TYPING = "typing"
    LEAVE = "leave"
    STOP_TYPING = "stop_typing"


class PresenceTracker:
    """Upserts one record per (chat, user) and filters by freshness on read.

    There is no background sweep; records older than the window simply stop
    showing up in :meth:`list_active`.
    """

    def __init__(self, window_seconds: int = 300):
        self.window = timedelta(seconds=window_seconds)

    def record_activity(
        self,
        db: Session,
        chat_id: str,
        actor: Actor,
        kind: ActivityKind,
        now: Optional[datetime] = None,
    ) -> Optional[PresenceRecord]:
        now = now or utcnow()
        kind = ActivityKind(kind)
        record = db.get(PresenceRecord, (chat_id, actor.id))

        if kind is ActivityKind.LEAVE:
            if record is not None:
                db.delete(record)
            db.commit()
            return None

        if record is None:
            record = PresenceRecord(chat_id=chat_id, user_id=actor.id)
            db.add(record)
        record.name = actor.display_name
        record.avatar = actor.avatar_url
        record.last_seen = now
        record.is_typing = kind is ActivityKind.TYPING
        db.commit()
        return record

    def list_active(
        self,
        db: Session,
        chat_id: str,
        exclude_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[PresenceRecord]:
        cutoff = (now or utcnow()) - self.window
        query = db.query(PresenceRecord).filter(
            PresenceRecord.chat_id == chat_id,
            PresenceRecord.last_seen >= cutoff,
        )
        if exclude_user_id:
            query = query.filter(PresenceRecord.user_id != exclude_user_id)
        return query.order_by(PresenceRecord.last_seen.desc()).all()
