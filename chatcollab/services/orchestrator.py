"""Chat session orchestration.

The orchestrator is the single writer-of-record for a chat: it gates every
operation through the access evaluator, persists the transcript, and drives
assistant turns from placeholder to a terminal state.

A turn moves ``idle -> awaiting_completion -> streaming`` and ends in
``finalized``, ``aborted`` (placeholder removed) or ``failed`` (placeholder
replaced by a retriable fallback reply). At most one turn per chat is in
flight; a second request while a placeholder is streaming is rejected.
"""

import asyncio
import enum
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatcollab.core.config import Settings
from chatcollab.core.errors import (
    Conflict,
    Expired,
    Forbidden,
    NotFound,
    Unauthenticated,
    UpstreamFailure,
    ValidationFailure,
)
from chatcollab.core.logging import get_logger
from chatcollab.core.security import Actor
from chatcollab.models import Chat, ChatCollaborator, ChatInvite, CollaboratorRole, InviteStatus, utcnow
from chatcollab.schemas import Attachment, ChatMessage
from chatcollab.services import access, tokens
from chatcollab.services.access import ShareLinkCheck
from chatcollab.services.ai import FALLBACK_REPLY, TIMEOUT_REPLY, build_conversation_history
from chatcollab.services.chat import (
    find_message,
    get_chat_with_access,
    load_messages,
    store_messages,
    streaming_placeholders,
)
from chatcollab.services.completion import CompletionProvider, resolve_model
from chatcollab.services.memory import MemoryProvider
from chatcollab.services.presence import ActivityKind, PresenceTracker
from chatcollab.services.titles import derive_title
from chatcollab.services.tokens import InviteOutcome, InviteRejection

logger = get_logger(__name__)

DEFAULT_TITLE = "New Chat"
_ROLES = {CollaboratorRole.EDITOR.value, CollaboratorRole.VIEWER.value}


class TurnState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_COMPLETION = "awaiting_completion"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class TurnEvent:
    type: str
    data: dict


@dataclass
class Turn:
    """One in-flight assistant reply."""

    chat_id: str
    actor_id: str
    assistant_message_id: str
    model: str
    conversation: List[dict]
    user_message_id: Optional[str] = None
    state: TurnState = TurnState.IDLE
    content: str = ""
    opened_at: Optional[datetime] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    loop: Optional[asyncio.AbstractEventLoop] = field(default=None, repr=False)

    def cancel(self) -> None:
        """Safe to call from any thread; sync routes run in a worker pool."""
        loop = self.loop
        if loop is None or loop.is_closed():
            self.cancel_event.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self.cancel_event.set()
        else:
            loop.call_soon_threadsafe(self.cancel_event.set)


class _TurnCancelled(Exception):
    pass


class ChatSessionOrchestrator:
    def __init__(
        self,
        session_factory: sessionmaker,
        completion_provider: CompletionProvider,
        presence: PresenceTracker,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        memory: Optional[MemoryProvider] = None,
    ):
        self.session_factory = session_factory
        self.provider = completion_provider
        self.memory = memory or MemoryProvider()
        self.presence = presence
        self.settings = settings
        self.clock = clock
        self._turns: Dict[str, Turn] = {}
        self._turns_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Chat CRUD
    # ------------------------------------------------------------------

    def create_chat(self, db: Session, actor: Actor, title: Optional[str] = None, chat_id: Optional[str] = None) -> Chat:
        """Get-or-create keyed by ``chat_id``; the first writer fixes id, owner and createdAt."""
        now = self.clock()
        chat_id = chat_id or f"chat_{uuid.uuid4().hex}"
        existing = db.get(Chat, chat_id)
        if existing is not None:
            return self._claimed_chat(existing, actor)
        chat = Chat(
            id=chat_id,
            owner_id=actor.id,
            owner_email=tokens.normalize_email(actor.email),
            title=(title or "").strip() or DEFAULT_TITLE,
            messages=[],
            is_shared=False,
            share_settings=None,
            created_at=now,
            updated_at=now,
        )
        db.add(chat)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = db.get(Chat, chat_id)
            if existing is None:
                raise
            return self._claimed_chat(existing, actor)
        logger.info("chat_created", chat_id=chat_id, actor_id=actor.id)
        return chat

    def _claimed_chat(self, chat: Chat, actor: Actor) -> Chat:
        if chat.owner_id != actor.id:
            raise Conflict("Chat id already in use")
        return chat

    def get_chat(self, db: Session, chat_id: str, actor: Optional[Actor]) -> Chat:
        return get_chat_with_access(db, chat_id, actor, now=self.clock())

    def list_chats_for_owner(self, db: Session, actor: Actor) -> List[Chat]:
        return db.query(Chat).filter(Chat.owner_id == actor.id).order_by(Chat.updated_at.desc()).all()

    def list_shared_with_me(self, db: Session, actor: Actor) -> List[Tuple[Chat, str]]:
        collabs = db.query(ChatCollaborator).filter(ChatCollaborator.user_id == actor.id).all()
        result = [(c.chat, c.role) for c in collabs if c.chat is not None]
        result.sort(key=lambda pair: pair[0].updated_at, reverse=True)
        return result

    def update_chat(
        self,
        db: Session,
        chat_id: str,
        actor: Actor,
        title: Optional[str] = None,
        messages: Optional[List[ChatMessage]] = None,
    ) -> Chat:
        chat = get_chat_with_access(db, chat_id, actor, write=True, now=self.clock())
        now = self.clock()
        if messages is not None:
            if streaming_placeholders(load_messages(chat)):
                raise Conflict("A response is being generated for this chat")
            if any(m.is_streaming for m in messages):
                raise ValidationFailure("Messages cannot be stored as streaming")
            store_messages(chat, list(messages), now)
        if title:
            chat.title = title
            chat.touch(now)
        db.commit()
        return chat

    def delete_chat(self, db: Session, chat_id: str, actor: Actor) -> None:
        chat = get_chat_with_access(db, chat_id, actor, now=self.clock())
        if chat.owner_id != actor.id:
            raise Forbidden("Only the owner can delete this chat")
        turn = self._turns.get(chat_id)
        if turn is not None:
            turn.cancel()
        db.delete(chat)
        db.commit()
        logger.info("chat_deleted", chat_id=chat_id, actor_id=actor.id)

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    def set_share_settings(
        self,
        db: Session,
        chat_id: str,
        actor: Actor,
        is_public: bool,
        allow_editing: bool,
        allow_invites: bool,
        expires_at: Optional[datetime] = None,
    ) -> dict:
        now = self.clock()
        chat = get_chat_with_access(db, chat_id, actor, now=now)
        if not access.can_administer(chat, actor.id, now=now):
            raise Forbidden("Only the owner or an editor can change sharing")
        expires_at = access.parse_timestamp(expires_at)
        if expires_at is not None and expires_at <= now:
            raise ValidationFailure("Share expiry must be in the future")

        token = tokens.generate_share_token(self.settings.share_token_length)
        share_settings = {
            "is_public": is_public,
            "allow_editing": allow_editing,
            "allow_invites": allow_invites,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "share_link": tokens.build_share_link(self.settings.public_base_url, chat.id, token),
        }
        chat.is_shared = True
        chat.share_settings = share_settings
        chat.touch(now)
        db.commit()
        logger.info("chat_shared", chat_id=chat_id, actor_id=actor.id, is_public=is_public, allow_editing=allow_editing)
        return share_settings

    def unshare(self, db: Session, chat_id: str, actor: Actor) -> None:
        chat = get_chat_with_access(db, chat_id, actor, now=self.clock())
        if chat.owner_id != actor.id:
            raise Forbidden("Only the owner can disable sharing")
        chat.is_shared = False
        chat.share_settings = {"is_public": False, "allow_editing": False, "allow_invites": False}
        chat.touch(self.clock())
        db.commit()
        logger.info("chat_unshared", chat_id=chat_id, actor_id=actor.id)

    def _check_link(self, chat: Optional[Chat], token: str, actor: Optional[Actor], for_join: bool) -> Chat:
        if chat is None:
            raise NotFound("Chat not found")
        check = access.check_share_link(chat, token, actor.id if actor else None, self.clock(), for_join=for_join)
        if check in (ShareLinkCheck.NOT_SHARED, ShareLinkCheck.INVALID_TOKEN):
            raise NotFound("Chat not found")
        if check is ShareLinkCheck.EXPIRED:
            raise Expired("This share link has expired")
        if check is ShareLinkCheck.EDITING_DISABLED:
            raise Forbidden("Editing is not allowed for this shared chat")
        if check is ShareLinkCheck.ALREADY_MEMBER:
            raise Conflict("You already have access to this chat")
        return chat

    def get_shared_chat(self, db: Session, chat_id: str, token: str, actor: Optional[Actor]) -> Chat:
        chat = self._check_link(db.get(Chat, chat_id, populate_existing=True), token, actor, for_join=False)
        if not (chat.share_settings or {}).get("is_public"):
            if actor is None:
                raise Unauthenticated("Sign in to open this shared chat")
            if not access.is_member(chat, actor.id):
                raise Forbidden("You don't have access to this chat")
        return chat

    def join_via_share_link(self, db: Session, chat_id: str, token: str, actor: Actor) -> ChatCollaborator:
        chat = self._check_link(db.get(Chat, chat_id, populate_existing=True), token, actor, for_join=True)
        now = self.clock()
        collaborator = ChatCollaborator(
            id=uuid.uuid4().hex,
            chat_id=chat.id,
            user_id=actor.id,
            name=actor.display_name,
            email=tokens.normalize_email(actor.email),
            avatar=actor.avatar_url,
            role=CollaboratorRole.EDITOR.value,
            joined_at=now,
            last_active=now,
            is_online=True,
        )
        self._add_collaborator(db, chat, collaborator, now)
        logger.info("share_link_joined", chat_id=chat_id, actor_id=actor.id)
        return collaborator

    def _add_collaborator(self, db: Session, chat: Chat, collaborator: ChatCollaborator, now: datetime) -> None:
        db.add(collaborator)
        chat.touch(now)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise Conflict("User is already a collaborator")
        db.refresh(chat)

    # ------------------------------------------------------------------
    # Collaborators and invites
    # ------------------------------------------------------------------

    def list_collaborators(self, db: Session, chat_id: str, actor: Optional[Actor]) -> Tuple[Chat, List[ChatCollaborator]]:
        chat = get_chat_with_access(db, chat_id, actor, now=self.clock())
        return chat, list(chat.collaborators)

    def remove_collaborator(self, db: Session, chat_id: str, actor: Actor, user_id: str) -> None:
        chat = get_chat_with_access(db, chat_id, actor, now=self.clock())
        if chat.owner_id != actor.id and user_id != actor.id:
            raise Forbidden("Only the owner can remove other collaborators")
        collab = chat.collaborator(user_id)
        if collab is None:
            raise NotFound("Collaborator not found")
        db.delete(collab)
        chat.touch(self.clock())
        db.commit()
        db.refresh(chat)
        logger.info("collaborator_removed", chat_id=chat_id, actor_id=actor.id, user_id=user_id)

    def update_collaborator_role(self, db: Session, chat_id: str, actor: Actor, user_id: str, role: str) -> ChatCollaborator:
        if role not in _ROLES:
            raise ValidationFailure(f"Unsupported role '{role}'")
        chat = get_chat_with_access(db, chat_id, actor, now=self.clock())
        if chat.owner_id != actor.id:
            raise Forbidden("Only the owner can change roles")
        collab = chat.collaborator(user_id)
        if collab is None:
            raise NotFound("Collaborator not found")
        collab.role = role
        chat.touch(self.clock())
        db.commit()
        return collab

    def create_invite(self, db: Session, chat_id: str, actor: Actor, email: str, role: str) -> ChatInvite:
        email = tokens.normalize_email(email)
        if not email:
            raise ValidationFailure("Email is required")
        if role not in _ROLES:
            raise ValidationFailure(f"Unsupported role '{role}'")
        now = self.clock()
        chat = get_chat_with_access(db, chat_id, actor, now=now)
        if not access.can_administer(chat, actor.id, invite_only=True, now=now):
            raise Forbidden("You cannot invite people to this chat")
        if email == chat.owner_email:
            raise Conflict("User is the owner of this chat")
        if any(tokens.normalize_email(c.email) == email for c in chat.collaborators):
            raise Conflict("User is already a collaborator")
        pending = (
            db.query(ChatInvite)
            .filter(
                ChatInvite.chat_id == chat_id,
                ChatInvite.invitee_email == email,
                ChatInvite.status == InviteStatus.PENDING.value,
                ChatInvite.expires_at > now,
            )
            .first()
        )
        if pending is not None:
            raise Conflict("An invite is already pending for this user")

        invite = tokens.create_invite(
            chat_id,
            actor.id,
            actor.display_name,
            email,
            role,
            ttl=timedelta(days=self.settings.invite_ttl_days),
            now=now,
        )
        db.add(invite)
        db.commit()
        logger.info("invite_created", chat_id=chat_id, actor_id=actor.id, invite_id=invite.id, role=role)
        return invite

    def get_invite(self, db: Session, invite_id: str) -> Tuple[ChatInvite, str]:
        invite = db.get(ChatInvite, invite_id)
        if invite is None:
            raise NotFound("Invite not found")
        if invite.status == InviteStatus.EXPIRED.value or (
            invite.status == InviteStatus.PENDING.value and not tokens.invite_is_open(invite, self.clock())
        ):
            raise Expired("This invite has expired")
        if invite.status != InviteStatus.PENDING.value:
            raise Conflict(f"This invite was already {invite.status}")
        chat = db.get(Chat, invite.chat_id)
        return invite, chat.title if chat else "Untitled Chat"

    def list_invites(self, db: Session, actor: Actor) -> List[ChatInvite]:
        return (
            db.query(ChatInvite)
            .filter(
                ChatInvite.invitee_email == tokens.normalize_email(actor.email),
                ChatInvite.status == InviteStatus.PENDING.value,
                ChatInvite.expires_at > self.clock(),
            )
            .order_by(ChatInvite.created_at.desc())
            .all()
        )

    def resolve_invite(self, db: Session, invite_id: str, actor: Actor, action: str) -> dict:
        invite = db.get(ChatInvite, invite_id)
        if invite is None:
            raise NotFound("Invite not found")
        now = self.clock()
        resolution = tokens.resolve_invite(invite, action, actor, now)
        log = logger.bind(invite_id=invite_id, chat_id=invite.chat_id, actor_id=actor.id, action=action)

        if resolution.outcome is InviteOutcome.INVALID:
            log.info("invite_rejected", reason=resolution.reason.value)
            if resolution.reason is InviteRejection.EXPIRED:
                db.commit()
                raise Expired("This invite has expired")
            if resolution.reason is InviteRejection.EMAIL_MISMATCH:
                raise Forbidden("This invite is not for you")
            if resolution.reason is InviteRejection.NOT_PENDING:
                raise Conflict("This invite has already been used")
            raise ValidationFailure(f"Unsupported invite action '{action}'")

        if resolution.outcome is InviteOutcome.DECLINE:
            db.commit()
            log.info("invite_declined")
            return {"status": invite.status, "chat_id": invite.chat_id}

        chat = db.get(Chat, invite.chat_id, populate_existing=True)
        if chat is None:
            db.rollback()
            raise NotFound("Chat not found")
        if access.is_member(chat, actor.id):
            db.rollback()
            raise Conflict("You already have access to this chat")
        self._add_collaborator(db, chat, resolution.collaborator, now)
        log.info("invite_accepted", role=invite.role)
        return {"status": invite.status, "chat_id": invite.chat_id, "role": invite.role}

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def record_presence(self, db: Session, chat_id: str, actor: Actor, kind: str) -> None:
        try:
            kind = ActivityKind(kind)
        except ValueError:
            raise ValidationFailure(f"Unsupported activity '{kind}'")
        now = self.clock()
        chat = get_chat_with_access(db, chat_id, actor, now=now)
        self.presence.record_activity(db, chat_id, actor, kind, now=now)

        collab = chat.collaborator(actor.id)
        if collab is None or kind is ActivityKind.STOP_TYPING:
            return
        try:
            collab.last_active = now
            collab.is_online = kind is not ActivityKind.LEAVE
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("collaborator_presence_sync_failed", chat_id=chat_id, actor_id=actor.id, error=str(exc))

    def list_presence(self, db: Session, chat_id: str, actor: Actor, include_self: bool = False):
        now = self.clock()
        get_chat_with_access(db, chat_id, actor, now=now)
        return self.presence.list_active(db, chat_id, exclude_user_id=None if include_self else actor.id, now=now)

    # ------------------------------------------------------------------
    # Messages and turns
    # ------------------------------------------------------------------

    def send_message(
        self,
        db: Session,
        chat_id: str,
        actor: Actor,
        content: str,
        attachments: Optional[List[Attachment]] = None,
        model: Optional[str] = None,
    ) -> Turn:
        attachments = list(attachments or [])
        if not content.strip() and not attachments:
            raise ValidationFailure("Message content or an attachment is required")
        now = self.clock()
        chat = get_chat_with_access(db, chat_id, actor, write=True, now=now)
        messages = self._idle_messages(db, chat, now)

        user_message = ChatMessage(
            id=uuid.uuid4().hex,
            role="user",
            content=content,
            timestamp=now,
            attachments=attachments,
            **self._authorship(chat, actor),
        )
        if not messages and content.strip():
            chat.title = derive_title(content)
        messages.append(user_message)
        return self._open_turn(db, chat, actor, messages, model, now, user_message_id=user_message.id)

    def edit_message(
        self,
        db: Session,
        chat_id: str,
        actor: Actor,
        message_id: str,
        new_content: str,
        model: Optional[str] = None,
    ) -> Optional[Turn]:
        """Replace a message and drop everything after it.

        Editing a user message starts a fresh assistant turn for it.
        """
        now = self.clock()
        chat = get_chat_with_access(db, chat_id, actor, write=True, now=now)
        messages = self._idle_messages(db, chat, now)
        index = find_message(messages, message_id)
        target = messages[index]
        if target.role == "user" and not new_content.strip() and not target.attachments:
            raise ValidationFailure("Message content or an attachment is required")

        messages = messages[: index + 1]
        messages[index] = target.model_copy(update={"content": new_content})
        logger.info("message_edited", chat_id=chat_id, actor_id=actor.id, message_id=message_id)
        if target.role != "user":
            store_messages(chat, messages, now)
            db.commit()
            return None
        return self._open_turn(db, chat, actor, messages, model, now, user_message_id=target.id)

    def delete_message(self, db: Session, chat_id: str, actor: Actor, message_id: str) -> None:
        now = self.clock()
        chat = get_chat_with_access(db, chat_id, actor, write=True, now=now)
        messages = load_messages(chat)
        index = find_message(messages, message_id)
        if messages[index].is_streaming:
            raise Conflict("Stop the generation before deleting its message")
        del messages[index]
        store_messages(chat, messages, now)
        db.commit()
        logger.info("message_deleted", chat_id=chat_id, actor_id=actor.id, message_id=message_id)

    def regenerate_response(self, db: Session, chat_id: str, actor: Actor, model: Optional[str] = None) -> Turn:
        now = self.clock()
        chat = get_chat_with_access(db, chat_id, actor, write=True, now=now)
        messages = self._idle_messages(db, chat, now)
        last_user = next((i for i in range(len(messages) - 1, -1, -1) if messages[i].role == "user"), None)
        if last_user is None:
            raise ValidationFailure("There is no user message to respond to")
        messages = messages[: last_user + 1]
        return self._open_turn(db, chat, actor, messages, model, now, user_message_id=messages[last_user].id)

    def stop_generation(self, db: Session, chat_id: str, actor: Actor) -> bool:
        get_chat_with_access(db, chat_id, actor, write=True, now=self.clock())
        turn = self._turns.get(chat_id)
        if turn is None:
            return False
        if turn.actor_id != actor.id:
            raise Forbidden("Only the person who started this response can stop it")
        turn.cancel()
        logger.info("turn_stop_requested", chat_id=chat_id, actor_id=actor.id)
        return True

    def in_flight(self, chat_id: str) -> Optional[Turn]:
        return self._turns.get(chat_id)

    def _authorship(self, chat: Chat, actor: Actor) -> dict:
        if chat.owner_id == actor.id and not chat.collaborators:
            return {}
        return {"author_id": actor.id, "author_name": actor.display_name}

    def _idle_messages(self, db: Session, chat: Chat, now: datetime) -> List[ChatMessage]:
        self.reconcile_stale_turns(db, chat, now)
        messages = load_messages(chat)
        if chat.id in self._turns or streaming_placeholders(messages):
            raise Conflict("A response is already being generated for this chat")
        return messages

    def reconcile_stale_turns(self, db: Session, chat: Chat, now: Optional[datetime] = None) -> int:
        """Close placeholders left streaming by a crashed process or an unread turn."""
        now = now or self.clock()
        turn = self._turns.get(chat.id)
        if turn is not None:
            if not self._abandoned(turn, now):
                return 0
            # opened but never run, e.g. the client went away before the body was read
            self._release(turn)
            turn.cancel()
            logger.warning("turn_abandoned", chat_id=chat.id, actor_id=turn.actor_id)
        grace = timedelta(seconds=self.settings.stale_stream_grace_seconds)
        messages = load_messages(chat)
        stale = 0
        for index, message in enumerate(messages):
            if message.is_streaming and now - access.parse_timestamp(message.timestamp) > grace:
                messages[index] = message.model_copy(update={"content": FALLBACK_REPLY, "is_streaming": False})
                stale += 1
        if stale:
            store_messages(chat, messages, now)
            db.commit()
            logger.warning("stale_turns_reconciled", chat_id=chat.id, count=stale)
        return stale

    def _abandoned(self, turn: Turn, now: datetime) -> bool:
        if turn.loop is not None or turn.state is not TurnState.AWAITING_COMPLETION or turn.opened_at is None:
            return False
        limit = timedelta(seconds=self.settings.stream_timeout_seconds + self.settings.stale_stream_grace_seconds)
        return now - turn.opened_at > limit

    def _open_turn(
        self,
        db: Session,
        chat: Chat,
        actor: Actor,
        messages: List[ChatMessage],
        model: Optional[str],
        now: datetime,
        user_message_id: Optional[str] = None,
    ) -> Turn:
        conversation, window = build_conversation_history(
            messages,
            now,
            self.settings.context_max_tokens,
            memory_context=self.memory.context_for(db, actor.id),
        )
        placeholder = ChatMessage(id=uuid.uuid4().hex, role="assistant", content="", timestamp=now, is_streaming=True)
        turn = Turn(
            chat_id=chat.id,
            actor_id=actor.id,
            assistant_message_id=placeholder.id,
            model=resolve_model(model, self.settings.default_model),
            conversation=conversation,
            user_message_id=user_message_id,
            opened_at=now,
        )
        with self._turns_lock:
            if chat.id in self._turns:
                raise Conflict("A response is already being generated for this chat")
            self._turns[chat.id] = turn
        try:
            store_messages(chat, messages + [placeholder], now)
            db.commit()
        except Exception:
            db.rollback()
            self._release(turn)
            raise
        turn.state = TurnState.AWAITING_COMPLETION
        logger.info(
            "turn_started",
            chat_id=chat.id,
            actor_id=actor.id,
            model=turn.model,
            context_tokens=window.current_tokens,
            context_messages=len(window.messages),
        )
        return turn

    def _release(self, turn: Turn) -> None:
        with self._turns_lock:
            if self._turns.get(turn.chat_id) is turn:
                del self._turns[turn.chat_id]

    async def run_turn(self, turn: Turn) -> AsyncIterator[TurnEvent]:
        """Stream the provider reply for ``turn`` and persist its terminal state.

        Closing the iterator early (client gone) counts as cancellation.
        """
        loop = asyncio.get_running_loop()
        turn.loop = loop
        deadline = loop.time() + self.settings.stream_timeout_seconds
        stream = self.provider.stream(turn.conversation, turn.model)
        iterator = stream.__aiter__()
        try:
            yield TurnEvent(
                "stream_start",
                {"user_message_id": turn.user_message_id, "assistant_message_id": turn.assistant_message_id},
            )
            while True:
                delta = await self._next_delta(iterator, turn, deadline - loop.time())
                if delta is None:
                    break
                if turn.state is TurnState.AWAITING_COMPLETION:
                    turn.state = TurnState.STREAMING
                turn.content += delta
                yield TurnEvent("text_chunk", {"content": delta})

            if not turn.content.strip():
                raise UpstreamFailure("Empty completion")
            message = self._finish(turn, TurnState.FINALIZED, turn.content)
            yield TurnEvent("stream_end", {"message": message.model_dump(mode="json") if message else None})
        except _TurnCancelled:
            self._finish(turn, TurnState.ABORTED)
            yield TurnEvent("stream_aborted", {"assistant_message_id": turn.assistant_message_id})
        except UpstreamFailure as exc:
            reply = TIMEOUT_REPLY if exc.timeout else FALLBACK_REPLY
            logger.warning("turn_upstream_failure", chat_id=turn.chat_id, error=exc.message, timeout=exc.timeout)
            self._finish(turn, TurnState.FAILED, reply)
            yield TurnEvent(
                "error",
                {
                    "code": "timeout" if exc.timeout else exc.error_code,
                    "message": reply,
                    "assistant_message_id": turn.assistant_message_id,
                },
            )
        except (asyncio.CancelledError, GeneratorExit):
            self._finish(turn, TurnState.ABORTED)
            raise
        except Exception:
            logger.exception("turn_failed", chat_id=turn.chat_id)
            self._finish(turn, TurnState.FAILED, FALLBACK_REPLY)
            yield TurnEvent(
                "error",
                {"code": "upstream_failure", "message": FALLBACK_REPLY, "assistant_message_id": turn.assistant_message_id},
            )
        finally:
            self._release(turn)
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _next_delta(self, iterator, turn: Turn, remaining: float) -> Optional[str]:
        """Next content delta, or None at end of stream."""
        if turn.cancel_event.is_set():
            raise _TurnCancelled()
        if remaining <= 0:
            raise UpstreamFailure("Completion timed out", timeout=True)

        next_task = asyncio.ensure_future(iterator.__anext__())
        cancel_task = asyncio.ensure_future(turn.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {next_task, cancel_task}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [t for t in (next_task, cancel_task) if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if cancel_task in done:
            raise _TurnCancelled()
        if next_task not in done:
            raise UpstreamFailure("Completion timed out", timeout=True)
        try:
            return next_task.result()
        except StopAsyncIteration:
            return None

    def _finish(self, turn: Turn, state: TurnState, content: Optional[str] = None) -> Optional[ChatMessage]:
        """Persist the terminal state of the placeholder in a fresh session."""
        turn.state = state
        db = self.session_factory()
        try:
            chat = db.get(Chat, turn.chat_id)
            if chat is None:
                logger.info("turn_chat_missing", chat_id=turn.chat_id, state=state.value)
                return None
            messages = load_messages(chat)
            try:
                index = find_message(messages, turn.assistant_message_id)
            except NotFound:
                logger.warning("turn_placeholder_missing", chat_id=turn.chat_id, state=state.value)
                return None
            if not messages[index].is_streaming:
                logger.info("turn_placeholder_settled", chat_id=turn.chat_id, state=state.value)
                return None

            now = self.clock()
            if state is TurnState.ABORTED:
                del messages[index]
                result = None
            else:
                result = messages[index].model_copy(update={"content": content, "is_streaming": False})
                messages[index] = result
            store_messages(chat, messages, now)
            db.commit()
            logger.info("turn_" + state.value, chat_id=turn.chat_id, actor_id=turn.actor_id, chars=len(turn.content))
            return result
        finally:
            db.close()
