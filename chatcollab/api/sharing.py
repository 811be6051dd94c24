"""Share-link endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chatcollab.api.chats import chat_detail
from chatcollab.api.deps import get_orchestrator
from chatcollab.core.database import get_db
from chatcollab.core.security import Actor, get_current_actor, get_optional_actor
from chatcollab.schemas import ShareResponse, ShareSettingsUpdate
from chatcollab.services.orchestrator import ChatSessionOrchestrator

router = APIRouter(tags=["sharing"])


@router.post("/chats/{chat_id}/share", response_model=ShareResponse)
def share_chat(
    chat_id: str,
    settings: ShareSettingsUpdate,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    share_settings = orchestrator.set_share_settings(
        db,
        chat_id,
        current_actor,
        is_public=settings.is_public,
        allow_editing=settings.allow_editing,
        allow_invites=settings.allow_invites,
        expires_at=settings.expires_at,
    )
    return ShareResponse(share_link=share_settings["share_link"], share_settings=share_settings)


@router.delete("/chats/{chat_id}/share")
def unshare_chat(
    chat_id: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    orchestrator.unshare(db, chat_id, current_actor)
    return {"success": True}


@router.get("/shared/{chat_id}/{share_token}")
def get_shared_chat(
    chat_id: str,
    share_token: str,
    current_actor: Optional[Actor] = Depends(get_optional_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    chat = orchestrator.get_shared_chat(db, chat_id, share_token, current_actor)
    return {"chat": chat_detail(chat, current_actor, orchestrator.clock()).model_dump(mode="json")}


@router.post("/shared/{chat_id}/{share_token}/join")
def join_shared_chat(
    chat_id: str,
    share_token: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    collaborator = orchestrator.join_via_share_link(db, chat_id, share_token, current_actor)
    return {"success": True, "role": collaborator.role}
