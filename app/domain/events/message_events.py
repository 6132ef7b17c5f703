"""
Message Context Domain Events
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from .base import DomainEvent


@dataclass
class MessageSent(DomainEvent):
    """메시지 전송 이벤트"""
    room_id: int
    message: Dict[str, Any]
    timestamp: datetime

    event_type = "message.created"


@dataclass
class MessageEdited(DomainEvent):
    """메시지 수정 이벤트"""
    room_id: int
    message: Dict[str, Any]
    timestamp: datetime

    event_type = "message.updated"


@dataclass
class MessageDeleted(DomainEvent):
    """메시지 삭제 이벤트"""
    room_id: int
    message_id: int
    deleted_by: int
    timestamp: datetime

    event_type = "message.deleted"


@dataclass
class ReactionUpdated(DomainEvent):
    """반응 변경 이벤트 (kind가 None이면 제거)"""
    room_id: int
    message_id: int
    user_id: int
    kind: Optional[str]
    reactions: Dict[str, int]
    timestamp: datetime

    event_type = "reaction.updated"


@dataclass
class TypingChanged(DomainEvent):
    """타이핑 상태 변경 이벤트"""
    room_id: int
    user_id: int
    is_typing: bool
    timestamp: datetime

    event_type = "typing"


@dataclass
class MessagesRead(DomainEvent):
    """메시지 읽음 이벤트"""
    room_id: int
    user_id: int
    timestamp: datetime

    event_type = "messages.read"
