"""Collaborator and invite endpoints."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatcollab.api.chats import public_collaborator
from chatcollab.api.deps import get_orchestrator
from chatcollab.core.database import get_db
from chatcollab.core.security import Actor, get_current_actor
from chatcollab.schemas import (
    CollaboratorResponse,
    CollaboratorRoleUpdate,
    InviteAction,
    InviteCreate,
    InviteDetails,
    InviteResponse,
)
from chatcollab.services import access
from chatcollab.services.orchestrator import ChatSessionOrchestrator

router = APIRouter(tags=["collaboration"])


@router.get("/chats/{chat_id}/collaborators", response_model=List[CollaboratorResponse])
def get_collaborators(
    chat_id: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    chat, collaborators = orchestrator.list_collaborators(db, chat_id, current_actor)
    if access.is_member(chat, current_actor.id):
        return collaborators
    return [public_collaborator(c) for c in collaborators]


@router.post(
    "/chats/{chat_id}/collaborators",
    response_model=InviteResponse,
    status_code=status.HTTP_201_CREATED,
)
def invite_collaborator(
    chat_id: str,
    invite: InviteCreate,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.create_invite(db, chat_id, current_actor, invite.email, invite.role)


@router.delete("/chats/{chat_id}/collaborators/{user_id}")
def remove_collaborator(
    chat_id: str,
    user_id: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    orchestrator.remove_collaborator(db, chat_id, current_actor, user_id)
    return {"success": True}


@router.patch("/chats/{chat_id}/collaborators/{user_id}", response_model=CollaboratorResponse)
def update_collaborator_role(
    chat_id: str,
    user_id: str,
    role_update: CollaboratorRoleUpdate,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.update_collaborator_role(db, chat_id, current_actor, user_id, role_update.role)


@router.get("/invites", response_model=List[InviteResponse])
def list_my_invites(
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_invites(db, current_actor)


@router.get("/invites/{invite_id}", response_model=InviteDetails)
def get_invite(
    invite_id: str,
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    invite, chat_title = orchestrator.get_invite(db, invite_id)
    return InviteDetails(
        invite=InviteResponse.model_validate(invite),
        chat_title=chat_title,
        inviter_name=invite.inviter_name,
    )


@router.post("/invites/{invite_id}")
def resolve_invite(
    invite_id: str,
    body: InviteAction,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    result = orchestrator.resolve_invite(db, invite_id, current_actor, body.action)
    return {"success": True, **result}
