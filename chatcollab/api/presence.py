"""Presence and typing endpoints, polled by clients."""

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from chatcollab.api.deps import get_orchestrator
from chatcollab.core.database import get_db
from chatcollab.core.security import Actor, get_current_actor
from chatcollab.schemas import ActiveUserResponse, ActivityUpdate
from chatcollab.services.orchestrator import ChatSessionOrchestrator

router = APIRouter(tags=["presence"])


@router.post("/chats/{chat_id}/activity")
def record_activity(
    chat_id: str,
    update: ActivityUpdate,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    orchestrator.record_presence(db, chat_id, current_actor, update.activity)
    return {"success": True}


@router.get("/chats/{chat_id}/activity", response_model=List[ActiveUserResponse])
def get_active_users(
    chat_id: str,
    include_self: bool = Query(False),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    orchestrator: ChatSessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_presence(db, chat_id, current_actor, include_self=include_self)
