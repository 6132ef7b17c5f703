"""
Chat service facade.

The entry point used by the HTTP and WebSocket layers. It composes the room
directory, participant registry, message store and typing service, retries
transient storage failures, and publishes domain events to the realtime
broker (and Kafka when enabled) only after the underlying write committed.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import StorageUnavailableException, TransientStorageError, access_denied_error
from app.domain.events import (
    ChatRoomCreated,
    ChatRoomDeleted,
    DomainEvent,
    MessageDeleted,
    MessageEdited,
    MessageSent,
    MessagesRead,
    ParticipantAdded,
    ParticipantRemoved,
    ReactionUpdated,
    TypingChanged,
)
from app.infrastructure.kafka.producer import get_event_producer, topic_for
from app.services import chat_room_service, message_service, room_member_service
from app.services.access_policy import RoomAction, can_access
from app.services.typing_service import TypingService
from app.services.user_service import find_users_by_ids
from app.utils.time_utils import utcnow, isoformat
from app.websockets.connection_manager import manager

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (OperationalError, TransientStorageError)


class ConversationState(str, enum.Enum):
    REQUESTED = "requested"
    RESOLVING_ROOM = "resolving_room"
    REUSED = "reused"
    CREATED = "created"
    READY = "ready"


@dataclass
class ConversationStart:
    room: Dict[str, Any]
    state: ConversationState = ConversationState.REQUESTED
    created: bool = False
    history: List[ConversationState] = field(default_factory=list)

    def advance(self, state: ConversationState):
        self.state = state
        self.history.append(state)


# =============================================================================
# Infrastructure helpers
# =============================================================================

async def _with_retry(db: AsyncSession, operation: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
    """일시적인 저장소 오류를 지수 백오프로 재시도. 소진되면 503"""
    attempts = max(1, settings.storage_max_retries)
    for attempt in range(1, attempts + 1):
        try:
            return await operation(db, *args, **kwargs)
        except RETRYABLE_ERRORS as e:
            await db.rollback()
            if attempt == attempts:
                logger.error(f"{operation.__name__} failed after {attempts} attempts: {e}")
                raise StorageUnavailableException(details={"operation": operation.__name__}) from e
            delay = settings.storage_retry_backoff * (2 ** (attempt - 1))
            logger.warning(
                f"Transient storage error in {operation.__name__} "
                f"(attempt {attempt}/{attempts}), retrying in {delay:.3f}s: {e}"
            )
            await asyncio.sleep(delay)


async def _publish_to_kafka(room_id: int, event: DomainEvent):
    if not settings.kafka_enabled:
        return
    producer = get_event_producer()
    if not producer.is_started:
        logger.warning(f"Kafka enabled but producer not started, dropping {event.event_type}")
        return
    try:
        await producer.publish_with_retry(topic_for(event), event, key=str(room_id))
    except Exception as e:
        logger.error(f"Failed to publish {event.event_type} for room {room_id} to Kafka: {e}")


async def _publish(
    room_id: int,
    event: DomainEvent,
    exclude_user: Optional[int] = None,
    notify_users: Iterable[int] = ()
):
    """커밋 이후 이벤트 발행 (실패는 기록만 하고 호출자에게 전파하지 않음)"""
    try:
        manager.publish(room_id, event, exclude_user=exclude_user)
        notify_users = list(notify_users)
        if notify_users:
            manager.publish_to_users(notify_users, event)
    except Exception as e:
        logger.error(f"Failed to publish {event.event_type} for room {room_id}: {e}")
    await _publish_to_kafka(room_id, event)


# =============================================================================
# Rooms
# =============================================================================

async def start_conversation(db: AsyncSession, user_id: int, participant_id: int) -> ConversationStart:
    """
    1:1 대화 시작

    REQUESTED → RESOLVING_ROOM → (REUSED | CREATED) → READY 순서로 진행하며,
    참여자까지 커밋된 채팅방만 반환합니다.
    """
    start = ConversationStart(room={})
    start.history.append(ConversationState.REQUESTED)

    start.advance(ConversationState.RESOLVING_ROOM)
    room, created = await _with_retry(
        db, chat_room_service.find_or_create_direct_room, user_id, participant_id
    )
    start.created = created
    start.advance(ConversationState.CREATED if created else ConversationState.REUSED)

    start.room = await chat_room_service.describe_room(db, room, user_id)
    start.advance(ConversationState.READY)

    if created:
        event = ChatRoomCreated(
            room_id=room.id,
            created_by=user_id,
            is_direct_message=True,
            participant_ids=start.room["participant_ids"],
            timestamp=utcnow()
        )
        await _publish(room.id, event, notify_users=start.room["participant_ids"])

    logger.info(
        f"Conversation {start.state.value} for users {user_id} and {participant_id}: "
        f"room {room.id} ({'created' if created else 'reused'})"
    )
    return start


async def create_group(db: AsyncSession, user_id: int, name: str, member_ids: List[int]) -> Dict[str, Any]:
    """그룹 채팅방 생성"""
    room = await _with_retry(db, chat_room_service.create_group_room, user_id, name, member_ids)
    view = await chat_room_service.describe_room(db, room, user_id)

    event = ChatRoomCreated(
        room_id=room.id,
        created_by=user_id,
        is_direct_message=False,
        participant_ids=view["participant_ids"],
        timestamp=utcnow()
    )
    await _publish(room.id, event, notify_users=view["participant_ids"])
    return view


async def list_rooms(db: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
    """내 채팅방 목록 (최근 활동 순)"""
    rooms = await _with_retry(db, chat_room_service.list_rooms_for, user_id)
    return [await chat_room_service.describe_room(db, room, user_id) for room in rooms]


async def get_room(db: AsyncSession, user_id: int, room_id: int) -> Dict[str, Any]:
    room = await chat_room_service.get_room_for_user(db, user_id, room_id)
    return await chat_room_service.describe_room(db, room, user_id)


async def delete_conversation(db: AsyncSession, user_id: int, room_id: int) -> None:
    """채팅방과 모든 기록 삭제"""
    participant_ids = await _with_retry(db, chat_room_service.delete_room, user_id, room_id)
    await TypingService.clear_room(room_id)

    event = ChatRoomDeleted(
        room_id=room_id,
        deleted_by=user_id,
        participant_ids=participant_ids,
        timestamp=utcnow()
    )
    manager.drop_room(room_id)
    await _publish(room_id, event, notify_users=participant_ids)


# =============================================================================
# Participants
# =============================================================================

async def list_participants(db: AsyncSession, user_id: int, room_id: int) -> List[Dict[str, Any]]:
    members = await room_member_service.list_participants(db, user_id, room_id)
    users = await find_users_by_ids(db, [m.user_id for m in members])
    return [
        {
            "user_id": member.user_id,
            "username": users[member.user_id].username if member.user_id in users else None,
            "display_name": (
                users[member.user_id].public_name if member.user_id in users
                else chat_room_service.UNKNOWN_USER_NAME
            ),
            "joined_at": member.created_at,
            "last_read_at": member.last_read_at,
        }
        for member in members
    ]


async def add_member(db: AsyncSession, user_id: int, room_id: int, member_id: int) -> List[Dict[str, Any]]:
    await _with_retry(db, room_member_service.add_participant, user_id, room_id, member_id)

    event = ParticipantAdded(room_id=room_id, user_id=member_id, added_by=user_id, timestamp=utcnow())
    await _publish(room_id, event, notify_users=[member_id])
    return await list_participants(db, user_id, room_id)


async def remove_member(db: AsyncSession, user_id: int, room_id: int, member_id: int) -> None:
    """참여자 제거 (커밋 이후 제거된 사용자는 더 이상 이벤트를 받지 않음)"""
    await _with_retry(db, room_member_service.remove_participant, user_id, room_id, member_id)
    await TypingService.set_typing(room_id, member_id, False)

    event = ParticipantRemoved(room_id=room_id, user_id=member_id, removed_by=user_id, timestamp=utcnow())
    await _publish(room_id, event, notify_users=[member_id])


async def mark_read(db: AsyncSession, user_id: int, room_id: int) -> Dict[str, Any]:
    member = await _with_retry(db, room_member_service.mark_room_read, user_id, room_id)

    await _publish(room_id, MessagesRead(room_id=room_id, user_id=user_id, timestamp=member.last_read_at))
    return {
        "room_id": room_id,
        "last_read_at": isoformat(member.last_read_at),
        "unread_count": await chat_room_service.get_unread_count(db, room_id, user_id),
    }


# =============================================================================
# Messages
# =============================================================================

async def send_message(db: AsyncSession, user_id: int, room_id: int, content: str) -> Dict[str, Any]:
    """메시지 전송 (커밋 후 브로커로 전달)"""
    message = await _with_retry(db, message_service.append_message, room_id, user_id, content)
    data = message_service.message_to_dict(message)

    await TypingService.set_typing(room_id, user_id, False)
    await _publish(room_id, MessageSent(room_id=room_id, message=data, timestamp=message.created_at))
    return data


async def list_messages(
    db: AsyncSession,
    user_id: int,
    room_id: int,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
    direction: str = message_service.FORWARD
) -> Dict[str, Any]:
    page = await _with_retry(
        db, message_service.list_messages, user_id, room_id,
        cursor=cursor, limit=limit, direction=direction
    )
    return {
        "items": [
            message_service.message_to_dict(m, page.reactions.get(m.id))
            for m in page.items
        ],
        "next_cursor": page.next_cursor,
        "direction": page.direction,
    }


async def edit_message(db: AsyncSession, user_id: int, message_id: int, content: str) -> Dict[str, Any]:
    message = await _with_retry(db, message_service.edit_message, user_id, message_id, content)
    summary = await message_service.get_reaction_summary(db, [message.id])
    data = message_service.message_to_dict(message, summary.get(message.id))

    await _publish(message.room_id, MessageEdited(room_id=message.room_id, message=data, timestamp=message.edited_at))
    return data


async def delete_message(db: AsyncSession, user_id: int, message_id: int) -> Dict[str, Any]:
    message = await _with_retry(db, message_service.soft_delete_message, user_id, message_id)
    data = message_service.message_to_dict(message)

    event = MessageDeleted(
        room_id=message.room_id,
        message_id=message.id,
        deleted_by=user_id,
        timestamp=message.deleted_at
    )
    await _publish(message.room_id, event)
    return data


async def _publish_reaction(db: AsyncSession, message, user_id: int, kind: Optional[str]) -> Dict[str, Any]:
    summary = await message_service.get_reaction_summary(db, [message.id])
    reactions = summary.get(message.id, {})
    event = ReactionUpdated(
        room_id=message.room_id,
        message_id=message.id,
        user_id=user_id,
        kind=kind,
        reactions=reactions,
        timestamp=utcnow()
    )
    await _publish(message.room_id, event)
    return message_service.message_to_dict(message, reactions)


async def react(db: AsyncSession, user_id: int, message_id: int, kind: str) -> Dict[str, Any]:
    """반응 추가/교체"""
    message, reaction = await _with_retry(db, message_service.react_to_message, user_id, message_id, kind)
    return await _publish_reaction(db, message, user_id, reaction.kind)


async def remove_reaction(db: AsyncSession, user_id: int, message_id: int) -> Dict[str, Any]:
    message, removed = await _with_retry(db, message_service.remove_reaction, user_id, message_id)
    if not removed:
        summary = await message_service.get_reaction_summary(db, [message.id])
        return message_service.message_to_dict(message, summary.get(message.id))
    return await _publish_reaction(db, message, user_id, None)


# =============================================================================
# Typing
# =============================================================================

async def set_typing(db: AsyncSession, user_id: int, room_id: int, is_typing: bool) -> bool:
    """입력 중 상태 변경 (send-message 권한 필요, 본인에게는 전달하지 않음)"""
    if not await can_access(db, user_id, room_id, RoomAction.SEND_MESSAGE):
        raise access_denied_error()

    stored = await TypingService.set_typing(room_id, user_id, is_typing)
    event = TypingChanged(room_id=room_id, user_id=user_id, is_typing=is_typing, timestamp=utcnow())
    await _publish(room_id, event, exclude_user=user_id)
    return stored


async def get_typing_users(db: AsyncSession, user_id: int, room_id: int) -> List[int]:
    if not await can_access(db, user_id, room_id, RoomAction.READ_MESSAGES):
        raise access_denied_error()
    return await TypingService.get_typing_users(room_id)
