"""Chat and message endpoints."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatcollab.api.deps import get_orchestrator, stream_turn
from chatcollab.core.database import get_db
from chatcollab.core.security import Actor, get_current_actor
from chatcollab.models import Chat
from chatcollab.schemas import (
    ChatCreate,
    ChatResponse,
    ChatUpdate,
    ChatWithMessages,
    CollaboratorResponse,
    MessageCreate,
    MessageEdit,
    RegenerateRequest,
    ShareSettingsResponse,
    SharedChatResponse,
)
from chatcollab.services import access
from chatcollab.services.chat import load_messages
from chatcollab.services.orchestrator import ChatSessionOrchestrator

router = APIRouter(tags=["chats"])


def public_collaborator(collab) -> CollaboratorResponse:
    return CollaboratorResponse(user_id=collab.user_id, name=collab.name, role=collab.role, is_online=collab.is_online)


def chat_detail(chat: Chat, actor: Optional[Actor], now: Optional[datetime] = None) -> ChatWithMessages:
    """Full chat view; outsiders reading a public chat get a trimmed collaborator list.

    The share link is shown to writers, and to readers allowed to invite while the share is live.
    """
    actor_id = actor.id if actor else None
    member = access.is_member(chat, actor_id)
    collaborators = [
        CollaboratorResponse.model_validate(c) if member else public_collaborator(c) for c in chat.collaborators
    ]
    share_settings = None
    if chat.share_settings:
        visible = dict(chat.share_settings)
        if not (actor_id and access.can_administer(chat, actor_id, invite_only=True, now=now)):
            visible.pop("share_link", None)
        share_settings = ShareSettingsResponse(**visible)
    return ChatWithMessages(
        id=chat.id,
        title=chat.title,
        owner_id=chat.owner_id,
        is_shared=bool(chat.is_shared),
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        messages=load_messages(chat),
        collaborators=collaborators,
        share_settings=share_settings,
        my_role=access.role_of(chat, actor_id) or "public",
    )


@router.get("/chats", response_model=List[ChatResponse])
def get_chats(
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_chats_for_owner(db, current_actor)


@router.get("/chats/shared", response_model=List[SharedChatResponse])
def get_shared_chats(
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    return [
        SharedChatResponse(
            id=chat.id,
            title=chat.title,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
            owner_id=chat.owner_id,
            my_role=role,
        )
        for chat, role in orchestrator.list_shared_with_me(db, current_actor)
    ]


@router.post("/chats", response_model=ChatWithMessages, status_code=status.HTTP_201_CREATED)
def create_chat(
    chat: ChatCreate,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    new_chat = orchestrator.create_chat(db, current_actor, title=chat.title, chat_id=chat.id)
    return chat_detail(new_chat, current_actor, orchestrator.clock())


@router.get("/chats/{chat_id}", response_model=ChatWithMessages)
def get_chat(
    chat_id: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    return chat_detail(orchestrator.get_chat(db, chat_id, current_actor), current_actor, orchestrator.clock())


@router.put("/chats/{chat_id}", response_model=ChatWithMessages)
def update_chat(
    chat_id: str,
    update: ChatUpdate,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    chat = orchestrator.update_chat(db, chat_id, current_actor, title=update.title, messages=update.messages)
    return chat_detail(chat, current_actor, orchestrator.clock())


@router.delete("/chats/{chat_id}")
def delete_chat(
    chat_id: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    orchestrator.delete_chat(db, chat_id, current_actor)
    return {"success": True}


@router.post("/chats/{chat_id}/messages")
async def send_message(
    chat_id: str,
    message: MessageCreate,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    turn = orchestrator.send_message(
        db, chat_id, current_actor, message.content, attachments=message.attachments, model=message.model
    )
    return stream_turn(orchestrator, turn)


@router.patch("/chats/{chat_id}/messages/{message_id}")
async def edit_message(
    chat_id: str,
    message_id: str,
    edit: MessageEdit,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    turn = orchestrator.edit_message(db, chat_id, current_actor, message_id, edit.content, model=edit.model)
    if turn is None:
        return {"success": True}
    return stream_turn(orchestrator, turn)


@router.delete("/chats/{chat_id}/messages/{message_id}")
def delete_message(
    chat_id: str,
    message_id: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    orchestrator.delete_message(db, chat_id, current_actor, message_id)
    return {"success": True}


@router.post("/chats/{chat_id}/regenerate")
async def regenerate_response(
    chat_id: str,
    request: Optional[RegenerateRequest] = None,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    turn = orchestrator.regenerate_response(db, chat_id, current_actor, model=request.model if request else None)
    return stream_turn(orchestrator, turn)


@router.post("/chats/{chat_id}/stop")
async def stop_generation(
    chat_id: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    return {"stopped": orchestrator.stop_generation(db, chat_id, current_actor)}
