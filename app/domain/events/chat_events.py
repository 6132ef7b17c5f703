"""
Chat Context Domain Events
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List
from .base import DomainEvent


@dataclass
class ChatRoomCreated(DomainEvent):
    """채팅방 생성 이벤트"""
    room_id: int
    created_by: int
    is_direct_message: bool
    participant_ids: List[int]
    timestamp: datetime

    event_type = "room.created"


@dataclass
class ParticipantAdded(DomainEvent):
    """참여자 추가 이벤트"""
    room_id: int
    user_id: int
    added_by: int
    timestamp: datetime

    event_type = "participant.added"


@dataclass
class ParticipantRemoved(DomainEvent):
    """참여자 제거 이벤트"""
    room_id: int
    user_id: int
    removed_by: int
    timestamp: datetime

    event_type = "participant.removed"


@dataclass
class ChatRoomDeleted(DomainEvent):
    """채팅방 삭제 이벤트"""
    room_id: int
    deleted_by: int
    participant_ids: List[int]
    timestamp: datetime

    event_type = "room.deleted"
