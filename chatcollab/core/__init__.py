from .config import settings, get_settings, Settings
from .database import get_db, init_db, SessionLocal
from .security import Actor, get_current_actor, get_optional_actor

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "get_db",
    "init_db",
    "SessionLocal",
    "Actor",
    "get_current_actor",
    "get_optional_actor",
]
