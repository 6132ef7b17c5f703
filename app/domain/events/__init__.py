"""
Domain Events

모든 Domain Event의 기본 클래스 및 이벤트 정의
"""

from .base import DomainEvent
from .message_events import (
    MessageSent,
    MessageEdited,
    MessageDeleted,
    ReactionUpdated,
    TypingChanged,
    MessagesRead,
)
from .chat_events import ChatRoomCreated, ParticipantAdded, ParticipantRemoved, ChatRoomDeleted

__all__ = [
    'DomainEvent',
    'MessageSent',
    'MessageEdited',
    'MessageDeleted',
    'ReactionUpdated',
    'TypingChanged',
    'MessagesRead',
    'ChatRoomCreated',
    'ParticipantAdded',
    'ParticipantRemoved',
    'ChatRoomDeleted',
]
