"""Permission decisions for a loaded chat.

Every function here is a pure predicate over a :class:`Chat` and an actor id;
nothing touches the database, so callers decide how to surface a denial.
"""

import enum
import hmac
from datetime import datetime, timezone
from typing import Optional

from chatcollab.models import Chat, CollaboratorRole, utcnow

OWNER_ROLE = "owner"


class ShareLinkCheck(str, enum.Enum):
    OK = "ok"
    NOT_SHARED = "not_shared"
    INVALID_TOKEN = "invalid_token"
    EXPIRED = "expired"
    EDITING_DISABLED = "editing_disabled"
    ALREADY_MEMBER = "already_member"


def parse_timestamp(value) -> Optional[datetime]:
    """Accept a datetime or ISO string; return naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def share_settings_of(chat: Chat) -> dict:
    return dict(chat.share_settings or {})


def share_expired(chat: Chat, now: Optional[datetime] = None) -> bool:
    expires_at = parse_timestamp(share_settings_of(chat).get("expires_at"))
    if expires_at is None:
        return False
    return (now or utcnow()) > expires_at


def role_of(chat: Chat, actor_id: Optional[str]) -> Optional[str]:
    """Return ``owner``, the collaborator role, or None for outsiders."""
    if not actor_id:
        return None
    if chat.owner_id == actor_id:
        return OWNER_ROLE
    collab = chat.collaborator(actor_id)
    return collab.role if collab else None


def is_member(chat: Chat, actor_id: Optional[str]) -> bool:
    return role_of(chat, actor_id) is not None


def is_publicly_readable(chat: Chat, now: Optional[datetime] = None) -> bool:
    return (
        bool(chat.is_shared)
        and bool(share_settings_of(chat).get("is_public"))
        and not share_expired(chat, now)
    )


def can_read(chat: Chat, actor_id: Optional[str], now: Optional[datetime] = None) -> bool:
    if is_member(chat, actor_id):
        return True
    return is_publicly_readable(chat, now)


def can_write(chat: Chat, actor_id: Optional[str]) -> bool:
    """Owner or editor. Viewers may read and show presence but not mutate."""
    return role_of(chat, actor_id) in (OWNER_ROLE, CollaboratorRole.EDITOR.value)


def can_record_presence(chat: Chat, actor_id: Optional[str], now: Optional[datetime] = None) -> bool:
    return bool(actor_id) and can_read(chat, actor_id, now)


def can_administer(
    chat: Chat,
    actor_id: Optional[str],
    invite_only: bool = False,
    now: Optional[datetime] = None,
) -> bool:
    """Share-settings changes and invites.

    ``allow_invites`` lets any reader invite, but never grants the right to
    change share settings.
    """
    if can_write(chat, actor_id):
        return True
    if not invite_only or not can_read(chat, actor_id, now):
        return False
    return bool(chat.is_shared) and bool(share_settings_of(chat).get("allow_invites")) and not share_expired(chat, now)


def token_matches(expected: Optional[str], presented: Optional[str]) -> bool:
    if not expected or not presented:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


def check_share_link(
    chat: Chat,
    token: Optional[str],
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
    for_join: bool = False,
) -> ShareLinkCheck:
    settings = share_settings_of(chat)
    if not chat.is_shared or not settings:
        return ShareLinkCheck.NOT_SHARED
    if not token_matches(share_token_of(settings.get("share_link")), token):
        return ShareLinkCheck.INVALID_TOKEN
    if share_expired(chat, now):
        return ShareLinkCheck.EXPIRED
    if for_join:
        if not settings.get("allow_editing"):
            return ShareLinkCheck.EDITING_DISABLED
        if is_member(chat, actor_id):
            return ShareLinkCheck.ALREADY_MEMBER
    return ShareLinkCheck.OK


def can_join_via_share_link(
    chat: Chat,
    token: Optional[str],
    actor_id: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    if not actor_id:
        return False
    return check_share_link(chat, token, actor_id, now, for_join=True) is ShareLinkCheck.OK


def share_token_of(share_link: Optional[str]) -> Optional[str]:
    """The token is the last path segment of the share link."""
    if not share_link:
        return None
    return share_link.rstrip("/").rsplit("/", 1)[-1] or None
