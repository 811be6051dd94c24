"""Share-link tokens and directed invitations."""

import enum
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from chatcollab.core.security import Actor
from chatcollab.models import Chat, ChatCollaborator, ChatInvite, InviteStatus, utcnow
from chatcollab.services.access import parse_timestamp, share_token_of, token_matches

SHARE_TOKEN_ALPHABET = string.ascii_letters + string.digits + "_-"
MIN_SHARE_TOKEN_LENGTH = 12


class InviteOutcome(str, enum.Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    INVALID = "invalid"


class InviteRejection(str, enum.Enum):
    EMAIL_MISMATCH = "email_mismatch"
    NOT_PENDING = "not_pending"
    EXPIRED = "expired"
    UNKNOWN_ACTION = "unknown_action"


@dataclass
class InviteResolution:
    outcome: InviteOutcome
    collaborator: Optional[ChatCollaborator] = None
    reason: Optional[InviteRejection] = None


def generate_share_token(length: int = MIN_SHARE_TOKEN_LENGTH) -> str:
    length = max(length, MIN_SHARE_TOKEN_LENGTH)
    return "".join(secrets.choice(SHARE_TOKEN_ALPHABET) for _ in range(length))


def build_share_link(base_url: str, chat_id: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/shared/{chat_id}/{token}"


def validate_share_token(chat: Chat, presented_token: Optional[str]) -> bool:
    """Exact match against the configured link; no link configured is a rejection."""
    settings = chat.share_settings or {}
    return token_matches(share_token_of(settings.get("share_link")), presented_token)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def create_invite(
    chat_id: str,
    inviter_id: str,
    inviter_name: str,
    invitee_email: str,
    role: str,
    ttl: timedelta = timedelta(days=7),
    now: Optional[datetime] = None,
) -> ChatInvite:
    """Build a pending invite. Membership checks are the caller's job."""
    created = now or utcnow()
    return ChatInvite(
        id=uuid.uuid4().hex,
        chat_id=chat_id,
        inviter_id=inviter_id,
        inviter_name=inviter_name or "Unknown",
        invitee_email=normalize_email(invitee_email),
        role=role,
        status=InviteStatus.PENDING.value,
        created_at=created,
        expires_at=created + ttl,
    )


def invite_is_open(invite: ChatInvite, now: Optional[datetime] = None) -> bool:
    return invite.status == InviteStatus.PENDING.value and (now or utcnow()) < parse_timestamp(invite.expires_at)


def resolve_invite(
    invite: ChatInvite,
    action: str,
    actor: Actor,
    now: Optional[datetime] = None,
) -> InviteResolution:
    """Apply accept/decline to a pending invite.

    Transitions are one-way: the invite status is updated in place only on a
    successful resolution, or to ``expired`` when found past its deadline.
    """
    now = now or utcnow()
    if normalize_email(actor.email) != normalize_email(invite.invitee_email):
        return InviteResolution(InviteOutcome.INVALID, reason=InviteRejection.EMAIL_MISMATCH)
    pending = invite.status == InviteStatus.PENDING.value
    if invite.status == InviteStatus.EXPIRED.value or (pending and now >= parse_timestamp(invite.expires_at)):
        invite.status = InviteStatus.EXPIRED.value
        return InviteResolution(InviteOutcome.INVALID, reason=InviteRejection.EXPIRED)
    if not pending:
        return InviteResolution(InviteOutcome.INVALID, reason=InviteRejection.NOT_PENDING)

    if action == InviteOutcome.ACCEPT.value:
        invite.status = InviteStatus.ACCEPTED.value
        collaborator = ChatCollaborator(
            id=uuid.uuid4().hex,
            chat_id=invite.chat_id,
            user_id=actor.id,
            name=actor.display_name,
            email=normalize_email(actor.email),
            avatar=actor.avatar_url,
            role=invite.role,
            joined_at=now,
            last_active=now,
            is_online=True,
        )
        return InviteResolution(InviteOutcome.ACCEPT, collaborator=collaborator)
    if action == InviteOutcome.DECLINE.value:
        invite.status = InviteStatus.DECLINED.value
        return InviteResolution(InviteOutcome.DECLINE)
    return InviteResolution(InviteOutcome.INVALID, reason=InviteRejection.UNKNOWN_ACTION)
