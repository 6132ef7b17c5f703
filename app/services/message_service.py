"""
Message service layer for database operations.

Handles messages, cursor pagination and reactions. Every message in a room is
stamped with a server time strictly after the room's previous message while
the room row is write-locked, so (created_at, id) order equals commit order.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional, Any, Iterable, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_, or_
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.core.errors import AuthorizationException, BusinessLogicException, access_denied_error
from app.core.validators import Validator
from app.models.chat_rooms import ChatRoom
from app.models.messages import Message, MessageReaction
from app.services.access_policy import RoomAction, can_access
from app.utils.time_utils import utcnow, monotonic_after, isoformat

logger = logging.getLogger(__name__)

FORWARD = "forward"
BACKWARD = "backward"
DELETED_MESSAGE_PLACEHOLDER = "This message was deleted"


@dataclass
class MessagePage:
    items: List[Message]
    next_cursor: Optional[str]
    direction: str = FORWARD
    reactions: Dict[int, Dict[str, int]] = field(default_factory=dict)


# =============================================================================
# Cursor helpers
# =============================================================================

def encode_cursor(message: Message) -> str:
    """(created_at, id)를 불투명한 커서 문자열로 인코딩"""
    payload = json.dumps({"t": message.created_at.isoformat(), "id": message.id})
    return base64.urlsafe_b64encode(payload.encode()).decode().rstrip("=")


def decode_cursor(cursor: str) -> Tuple[datetime, int]:
    """커서 문자열을 (created_at, id)로 디코딩"""
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode()).decode())
        return datetime.fromisoformat(payload["t"]), int(payload["id"])
    except (ValueError, KeyError, TypeError, binascii.Error, UnicodeDecodeError):
        raise BusinessLogicException("Invalid pagination cursor", details={"cursor": cursor})


def _clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return settings.message_page_size
    return max(1, min(int(limit), settings.max_message_page_size))


# =============================================================================
# Message CRUD Operations
# =============================================================================

async def find_message_by_id(db: AsyncSession, message_id: int) -> Optional[Message]:
    """메시지 ID로 조회"""
    result = await db.execute(select(Message).where(Message.id == message_id))
    return result.scalar_one_or_none()


async def _get_accessible_message(
    db: AsyncSession,
    user_id: int,
    message_id: int,
    action: RoomAction
) -> Message:
    """메시지를 조회하고 해당 채팅방에 대한 권한을 확인 (없으면 같은 거부 응답)"""
    message = await find_message_by_id(db, message_id)
    if message is None:
        raise access_denied_error()
    if not await can_access(db, user_id, message.room_id, action):
        raise access_denied_error()
    return message


async def append_message(db: AsyncSession, room_id: int, sender_id: int, content: str) -> Message:
    """
    메시지 저장

    Args:
        db: 데이터베이스 세션
        room_id: 채팅방 ID
        sender_id: 보낸 사용자 ID (send-message 권한 필요)
        content: 메시지 내용 (앞뒤 공백 제거 후 저장)

    Returns:
        Message: 커밋된 메시지
    """
    if not await can_access(db, sender_id, room_id, RoomAction.SEND_MESSAGE):
        raise access_denied_error()

    content = Validator.validate_message_content(content)

    try:
        # room 행을 먼저 갱신해 쓰기 잠금을 잡은 뒤 last_message_at을 읽는다
        await db.execute(
            update(ChatRoom).where(ChatRoom.id == room_id).values(updated_at=utcnow())
        )
        result = await db.execute(
            select(ChatRoom.last_message_at).where(ChatRoom.id == room_id).with_for_update()
        )
        created_at = monotonic_after(result.scalar_one_or_none())

        message = Message(
            room_id=room_id,
            sender_id=sender_id,
            content=content,
            created_at=created_at
        )
        db.add(message)
        await db.execute(
            update(ChatRoom)
            .where(ChatRoom.id == room_id)
            .values(last_message_at=created_at, updated_at=created_at)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return message


async def list_messages(
    db: AsyncSession,
    user_id: int,
    room_id: int,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
    direction: str = FORWARD
) -> MessagePage:
    """
    채팅방 메시지 페이지 조회

    forward는 커서 이후를 오래된 순으로, backward는 커서 이전을 최신 순으로 반환합니다.
    커서는 마지막으로 받은 메시지의 (created_at, id)이므로 그 사이에 새 메시지가
    들어와도 건너뛰거나 중복되지 않습니다.
    """
    if direction not in (FORWARD, BACKWARD):
        raise BusinessLogicException("direction must be 'forward' or 'backward'")
    if not await can_access(db, user_id, room_id, RoomAction.READ_MESSAGES):
        raise access_denied_error()

    page_size = _clamp_limit(limit)
    query = select(Message).where(Message.room_id == room_id)

    if cursor:
        created_at, message_id = decode_cursor(cursor)
        if direction == FORWARD:
            query = query.where(or_(
                Message.created_at > created_at,
                and_(Message.created_at == created_at, Message.id > message_id)
            ))
        else:
            query = query.where(or_(
                Message.created_at < created_at,
                and_(Message.created_at == created_at, Message.id < message_id)
            ))

    if direction == FORWARD:
        query = query.order_by(Message.created_at.asc(), Message.id.asc())
    else:
        query = query.order_by(Message.created_at.desc(), Message.id.desc())

    result = await db.execute(query.limit(page_size + 1))
    rows = list(result.scalars().all())

    has_more = len(rows) > page_size
    items = rows[:page_size]
    next_cursor = encode_cursor(items[-1]) if has_more else None

    return MessagePage(
        items=items,
        next_cursor=next_cursor,
        direction=direction,
        reactions=await get_reaction_summary(db, [m.id for m in items])
    )


async def iter_messages(
    db: AsyncSession,
    user_id: int,
    room_id: int,
    direction: str = FORWARD,
    page_size: Optional[int] = None
) -> AsyncIterator[Message]:
    """페이지를 따라가며 메시지를 하나씩 반환 (호출할 때마다 처음부터 다시 시작)"""
    cursor = None
    while True:
        page = await list_messages(db, user_id, room_id, cursor=cursor, limit=page_size, direction=direction)
        for message in page.items:
            yield message
        if page.next_cursor is None:
            return
        cursor = page.next_cursor


async def edit_message(db: AsyncSession, user_id: int, message_id: int, content: str) -> Message:
    """메시지 수정 (보낸 사람만, 삭제된 메시지는 불가)"""
    message = await _get_accessible_message(db, user_id, message_id, RoomAction.SEND_MESSAGE)
    if message.sender_id != user_id:
        raise AuthorizationException("Only the sender can edit this message")
    if message.is_deleted:
        raise BusinessLogicException("Deleted messages cannot be edited")

    message.edit_content(Validator.validate_message_content(content), utcnow())
    await db.commit()
    return message


async def soft_delete_message(db: AsyncSession, user_id: int, message_id: int) -> Message:
    """메시지 삭제 표시 (행은 유지되어 순서와 참조가 보존됨)"""
    message = await _get_accessible_message(db, user_id, message_id, RoomAction.READ_MESSAGES)
    if message.sender_id != user_id:
        raise AuthorizationException("Only the sender can delete this message")

    if not message.is_deleted:
        message.soft_delete(utcnow())
        await db.commit()
    return message


# =============================================================================
# Reaction Operations
# =============================================================================

async def _find_reaction(db: AsyncSession, message_id: int, user_id: int) -> Optional[MessageReaction]:
    result = await db.execute(
        select(MessageReaction).where(
            MessageReaction.message_id == message_id,
            MessageReaction.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def react_to_message(db: AsyncSession, user_id: int, message_id: int, kind: str) -> Tuple[Message, MessageReaction]:
    """메시지 반응 추가 또는 교체 (사용자당 메시지 하나에 반응 하나)"""
    message = await _get_accessible_message(db, user_id, message_id, RoomAction.REACT)
    if message.is_deleted:
        raise BusinessLogicException("Cannot react to a deleted message")
    kind = Validator.validate_reaction_kind(kind)

    now = utcnow()
    reaction = await _find_reaction(db, message_id, user_id)
    if reaction is None:
        reaction = MessageReaction(
            message_id=message_id,
            user_id=user_id,
            kind=kind,
            created_at=now,
            updated_at=now
        )
        db.add(reaction)
        try:
            await db.commit()
            return message, reaction
        except IntegrityError:
            # 같은 사용자의 동시 반응: 먼저 들어간 행을 갱신
            await db.rollback()
            await db.refresh(message)
            reaction = await _find_reaction(db, message_id, user_id)

    reaction.kind = kind
    reaction.updated_at = now
    await db.commit()
    return message, reaction


async def remove_reaction(db: AsyncSession, user_id: int, message_id: int) -> Tuple[Message, bool]:
    """내 반응 제거. 제거된 것이 있으면 True"""
    message = await _get_accessible_message(db, user_id, message_id, RoomAction.REACT)
    result = await db.execute(
        delete(MessageReaction).where(
            MessageReaction.message_id == message_id,
            MessageReaction.user_id == user_id
        )
    )
    await db.commit()
    return message, result.rowcount > 0


async def get_reaction_summary(db: AsyncSession, message_ids: Iterable[int]) -> Dict[int, Dict[str, int]]:
    """메시지별 반응 요약 ({message_id: {kind: count}})"""
    ids = list(message_ids)
    if not ids:
        return {}

    result = await db.execute(
        select(MessageReaction.message_id, MessageReaction.kind, func.count(MessageReaction.id))
        .where(MessageReaction.message_id.in_(ids))
        .group_by(MessageReaction.message_id, MessageReaction.kind)
    )
    summary: Dict[int, Dict[str, int]] = {}
    for message_id, kind, count in result.all():
        summary.setdefault(message_id, {})[kind] = count
    return summary


# =============================================================================
# Serialization
# =============================================================================

def message_to_dict(message: Message, reactions: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    """응답/이벤트용 메시지 표현 (삭제된 메시지는 내용을 숨김)"""
    return {
        "id": message.id,
        "room_id": message.room_id,
        "sender_id": message.sender_id,
        "content": DELETED_MESSAGE_PLACEHOLDER if message.is_deleted else message.content,
        "created_at": isoformat(message.created_at),
        "is_edited": message.is_edited,
        "edited_at": isoformat(message.edited_at),
        "is_deleted": message.is_deleted,
        "reactions": reactions or {},
    }
