"""
Services layer for data access and chat operations.

This layer handles:
- Authorization decisions (access_policy)
- Database queries and operations (room directory, participants, messages)
- Ephemeral state in Redis (typing indicators)
- The chat facade used by the API and WebSocket layers (chat_service)
"""

from . import access_policy
from . import chat_room_service
from . import room_member_service
from . import message_service

__all__ = [
    "access_policy",
    "chat_room_service",
    "room_member_service",
    "message_service",
]
