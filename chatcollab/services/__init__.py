from .access import can_read, can_write, can_administer, can_join_via_share_link
from .context_window import build_window, estimate_tokens
from .orchestrator import ChatSessionOrchestrator, Turn, TurnEvent, TurnState
from .presence import ActivityKind, PresenceTracker
from .titles import derive_title

__all__ = [
    "can_read",
    "can_write",
    "can_administer",
    "can_join_via_share_link",
    "build_window",
    "estimate_tokens",
    "ChatSessionOrchestrator",
    "Turn",
    "TurnEvent",
    "TurnState",
    "ActivityKind",
    "PresenceTracker",
    "derive_title",
]
