"""Per-user memory endpoints."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from chatcollab.api.deps import get_memory_store
from chatcollab.core.database import get_db
from chatcollab.core.security import Actor, get_current_actor
from chatcollab.schemas import MemoryCreate, MemoryResponse
from chatcollab.services.memory import StoredMemoryProvider

router = APIRouter(tags=["memory"])


@router.get("/memories", response_model=List[MemoryResponse])
def get_memories(
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    store: StoredMemoryProvider = Depends(get_memory_store),
):
    return store.list_memories(db, current_actor.id)


@router.post("/memories", response_model=MemoryResponse, status_code=status.HTTP_201_CREATED)
def store_memory(
    memory: MemoryCreate,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    store: StoredMemoryProvider = Depends(get_memory_store),
):
    return store.store_memory(db, current_actor.id, memory.key, memory.value, memory.context)


@router.delete("/memories/{key}")
def delete_memory(
    key: str,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    store: StoredMemoryProvider = Depends(get_memory_store),
):
    store.delete_memory(db, current_actor.id, key)
    return {"success": True}
