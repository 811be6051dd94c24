from . import chats, collaboration, presence, sharing

__all__ = ["chats", "collaboration", "presence", "sharing"]
