"""
Chat room service layer for database operations.

Room directory: resolves the canonical direct room for a pair of users,
creates group rooms, lists a user's rooms and keeps direct rooms consistent.
"""

import logging
from typing import Optional, List, Tuple, Dict, Any, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError

from app.core.errors import (
    BusinessLogicException,
    InconsistentRoomError,
    RoomConflictError,
    TransientStorageError,
    access_denied_error,
    user_not_found_error,
)
from app.core.logging import log_room_repair
from app.core.validators import Validator
from app.models.chat_rooms import ChatRoom, make_direct_key
from app.models.room_members import RoomMember
from app.models.messages import Message, MessageReaction
from app.services.access_policy import RoomAction, can_access
from app.services.room_member_service import build_room_members, get_participant_ids
from app.services.user_service import find_user_by_id, find_users_by_ids
from app.utils.time_utils import utcnow, isoformat

logger = logging.getLogger(__name__)

UNKNOWN_USER_NAME = "Unknown user"


# =============================================================================
# Chat Room Lookups
# =============================================================================

async def find_chat_room_by_id(db: AsyncSession, room_id: int) -> Optional[ChatRoom]:
    """채팅방 ID로 조회"""
    result = await db.execute(
        select(ChatRoom).where(ChatRoom.id == room_id)
    )
    return result.scalar_one_or_none()


async def find_direct_room(db: AsyncSession, user1_id: int, user2_id: int) -> Optional[ChatRoom]:
    """두 사용자 간의 1:1 채팅방 조회 (순서 무관)"""
    result = await db.execute(
        select(ChatRoom).where(ChatRoom.direct_key == make_direct_key(user1_id, user2_id))
    )
    return result.scalar_one_or_none()


# =============================================================================
# Direct Room Resolution
# =============================================================================

async def _insert_direct_room(db: AsyncSession, user1_id: int, user2_id: int) -> ChatRoom:
    """채팅방과 두 참여자를 한 트랜잭션으로 저장. 경합에서 지면 RoomConflictError"""
    direct_key = make_direct_key(user1_id, user2_id)
    now = utcnow()
    room = ChatRoom(
        name=None,
        is_direct_message=True,
        direct_key=direct_key,
        created_by=user1_id,
        created_at=now,
        updated_at=now
    )
    db.add(room)
    try:
        await db.flush()
        db.add_all(build_room_members(room.id, (user1_id, user2_id), now))
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise RoomConflictError(direct_key) from e
    return room


async def find_or_create_direct_room(
    db: AsyncSession,
    user1_id: int,
    user2_id: int
) -> Tuple[ChatRoom, bool]:
    """
    두 사용자의 1:1 채팅방을 찾거나 생성합니다.

    동시에 여러 요청이 들어와도 같은 쌍에는 항상 같은 채팅방이 반환됩니다.
    direct_key unique 제약에서 진 쪽은 롤백 후 이긴 쪽의 채팅방을 다시 조회합니다.

    Returns:
        (채팅방, 새로 생성했는지 여부)
    """
    if user1_id == user2_id:
        raise BusinessLogicException("Cannot create chat room with yourself")

    users = await find_users_by_ids(db, (user1_id, user2_id))
    for user_id in (user1_id, user2_id):
        if user_id not in users:
            raise user_not_found_error(user_id)

    existing = await find_direct_room(db, user1_id, user2_id)
    if existing is not None and existing.needs_cleanup:
        # 두 사용자가 모두 있으므로 격리된 방은 지우고 새로 만든다
        await _purge_room(db, existing.id)
        existing = None

    if existing is None:
        try:
            return await _insert_direct_room(db, user1_id, user2_id), True
        except RoomConflictError as e:
            logger.info(f"Direct room creation lost race for {e.direct_key}, reusing winner")
            existing = await find_direct_room(db, user1_id, user2_id)
            if existing is None:
                # 제약 위반인데 행이 없다면 다른 쪽이 롤백한 것
                raise TransientStorageError(str(e)) from e

    if not await ensure_direct_room_healthy(db, existing):
        raise access_denied_error()
    return existing, False


# =============================================================================
# Group Rooms
# =============================================================================

async def create_group_room(
    db: AsyncSession,
    creator_id: int,
    name: str,
    member_ids: Iterable[int]
) -> ChatRoom:
    """그룹 채팅방 생성 (생성자 포함 모든 멤버를 한 트랜잭션으로 저장)"""
    name = Validator.validate_room_name(name)

    participant_ids = [creator_id]
    for user_id in member_ids:
        if user_id not in participant_ids:
            participant_ids.append(user_id)

    users = await find_users_by_ids(db, participant_ids)
    for user_id in participant_ids:
        if user_id not in users:
            raise user_not_found_error(user_id)

    now = utcnow()
    room = ChatRoom(
        name=name,
        is_direct_message=False,
        created_by=creator_id,
        created_at=now,
        updated_at=now
    )
    db.add(room)
    try:
        await db.flush()
        db.add_all(build_room_members(room.id, participant_ids, now))
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return room


# =============================================================================
# Consistency (repair on read)
# =============================================================================

async def _verify_direct_room(db: AsyncSession, room: ChatRoom) -> List[int]:
    participant_ids = await get_participant_ids(db, room.id)
    expected = room.direct_participant_ids
    if expected is None or set(participant_ids) != set(expected):
        raise InconsistentRoomError(room.id, len(participant_ids))
    return participant_ids


async def _quarantine(db: AsyncSession, room: ChatRoom, participant_count: int, **extra) -> bool:
    room.needs_cleanup = True
    await db.commit()
    log_room_repair(room.id, "quarantined", participant_count, **extra)
    return False


async def _repair_direct_room(db: AsyncSession, room: ChatRoom, error: InconsistentRoomError) -> bool:
    expected = room.direct_participant_ids
    if expected is None:
        return await _quarantine(db, room, error.participant_count, reason="invalid_direct_key")

    present = set(await get_participant_ids(db, room.id))
    missing = set(expected) - present
    extras = present - set(expected)

    existing_users = await find_users_by_ids(db, missing)
    if len(existing_users) != len(missing):
        return await _quarantine(
            db, room, error.participant_count,
            reason="participant_user_missing",
            missing_user_ids=sorted(missing - set(existing_users))
        )

    if extras:
        await db.execute(
            delete(RoomMember).where(
                RoomMember.room_id == room.id,
                RoomMember.user_id.in_(extras)
            )
        )
    db.add_all(build_room_members(room.id, sorted(missing), utcnow()))
    try:
        await db.commit()
    except IntegrityError:
        # 다른 요청이 먼저 복구함
        await db.rollback()
        await db.refresh(room)

    log_room_repair(
        room.id, "repaired", error.participant_count,
        restored_user_ids=sorted(missing),
        removed_user_ids=sorted(extras)
    )
    return True


async def ensure_direct_room_healthy(db: AsyncSession, room: ChatRoom) -> bool:
    """
    1:1 채팅방의 참여자가 정확히 두 명인지 확인하고 필요하면 복구합니다.

    - 빠진 참여자는 direct_key에서 복원 (사용자가 존재할 때만)
    - 키에 없는 참여자는 제거
    - 복구할 수 없으면 needs_cleanup 플래그로 격리

    Returns:
        bool: 사용 가능한 채팅방이면 True
    """
    if room.needs_cleanup:
        return False
    if not room.is_direct_message:
        return True

    try:
        await _verify_direct_room(db, room)
        return True
    except InconsistentRoomError as e:
        return await _repair_direct_room(db, room, e)


async def _purge_room(db: AsyncSession, room_id: int):
    try:
        await _delete_room_rows(db, room_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.warning(f"Purged quarantined room {room_id}")


async def purge_quarantined_rooms(db: AsyncSession) -> int:
    """격리된 채팅방을 모두 삭제하고 삭제된 개수를 반환"""
    result = await db.execute(select(ChatRoom.id).where(ChatRoom.needs_cleanup == True))
    room_ids = list(result.scalars().all())
    try:
        for room_id in room_ids:
            await _delete_room_rows(db, room_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if room_ids:
        logger.warning(f"Purged {len(room_ids)} quarantined rooms: {room_ids}")
    return len(room_ids)


# =============================================================================
# Listing and Views
# =============================================================================

async def list_rooms_for(db: AsyncSession, user_id: int) -> List[ChatRoom]:
    """사용자의 채팅방 목록 (최근 메시지 순, 격리된 채팅방 제외)"""
    query = (
        select(ChatRoom)
        .join(RoomMember, RoomMember.room_id == ChatRoom.id)
        .where(
            RoomMember.user_id == user_id,
            ChatRoom.needs_cleanup == False
        )
        .order_by(
            func.coalesce(ChatRoom.last_message_at, ChatRoom.created_at).desc(),
            ChatRoom.id.desc()
        )
    )
    result = await db.execute(query)
    rooms = list(result.scalars().all())

    usable = []
    for room in rooms:
        if await ensure_direct_room_healthy(db, room):
            usable.append(room)
    return usable


async def get_room_for_user(db: AsyncSession, user_id: int, room_id: int) -> ChatRoom:
    """read-room 권한을 확인하고 채팅방 반환"""
    if not await can_access(db, user_id, room_id, RoomAction.READ_ROOM):
        raise access_denied_error()

    room = await find_chat_room_by_id(db, room_id)
    if room is None or not await ensure_direct_room_healthy(db, room):
        raise access_denied_error()
    return room


async def compute_display_name(db: AsyncSession, room: ChatRoom, viewer_id: int) -> str:
    """보는 사람 기준 채팅방 이름 (1:1은 상대방 이름을 매번 계산)"""
    if not room.is_direct_message:
        return room.name or ""

    pair = room.direct_participant_ids
    if pair is None:
        return UNKNOWN_USER_NAME

    if viewer_id in pair:
        other_id = pair[1] if pair[0] == viewer_id else pair[0]
        other = await find_user_by_id(db, other_id)
        return other.public_name if other else UNKNOWN_USER_NAME

    # 참여자가 아닌 관리자 등이 볼 때
    users = await find_users_by_ids(db, pair)
    return " & ".join(
        users[user_id].public_name if user_id in users else UNKNOWN_USER_NAME
        for user_id in pair
    )


async def get_last_message(db: AsyncSession, room_id: int) -> Optional[Dict[str, Any]]:
    """채팅방의 마지막 메시지 (삭제된 메시지 제외)"""
    result = await db.execute(
        select(Message)
        .where(Message.room_id == room_id, Message.is_deleted == False)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    )
    last_msg = result.scalar_one_or_none()
    if not last_msg:
        return None

    return {
        "id": last_msg.id,
        "sender_id": last_msg.sender_id,
        "content": last_msg.content,
        "created_at": isoformat(last_msg.created_at)
    }


async def get_unread_count(db: AsyncSession, room_id: int, user_id: int) -> int:
    """마지막으로 읽은 시점 이후 다른 사람이 보낸 메시지 수"""
    result = await db.execute(
        select(RoomMember.last_read_at).where(
            RoomMember.room_id == room_id,
            RoomMember.user_id == user_id
        )
    )
    last_read_at = result.scalar_one_or_none()

    query = select(func.count(Message.id)).where(
        Message.room_id == room_id,
        Message.sender_id != user_id,
        Message.is_deleted == False
    )
    if last_read_at is not None:
        query = query.where(Message.created_at > last_read_at)

    result = await db.execute(query)
    return result.scalar_one()


async def describe_room(db: AsyncSession, room: ChatRoom, viewer_id: int) -> Dict[str, Any]:
    """응답용 채팅방 정보 (보는 사람 기준)"""
    participant_ids = await get_participant_ids(db, room.id)
    return {
        "id": room.id,
        "name": room.name,
        "display_name": await compute_display_name(db, room, viewer_id),
        "is_direct_message": room.is_direct_message,
        "created_by": room.created_by,
        "participant_ids": participant_ids,
        "created_at": room.created_at,
        "updated_at": room.updated_at,
        "last_message_at": room.last_message_at,
        "last_message": await get_last_message(db, room.id),
        "unread_count": await get_unread_count(db, room.id, viewer_id),
    }


# =============================================================================
# Deletion
# =============================================================================

async def _delete_room_rows(db: AsyncSession, room_id: int):
    """반응 → 메시지 → 참여자 → 채팅방 순으로 삭제 (커밋은 호출자가)"""
    message_ids = select(Message.id).where(Message.room_id == room_id)
    await db.execute(delete(MessageReaction).where(MessageReaction.message_id.in_(message_ids)))
    await db.execute(delete(Message).where(Message.room_id == room_id))
    await db.execute(delete(RoomMember).where(RoomMember.room_id == room_id))
    await db.execute(delete(ChatRoom).where(ChatRoom.id == room_id))


async def delete_room(db: AsyncSession, actor_id: int, room_id: int) -> List[int]:
    """
    채팅방과 모든 기록을 삭제합니다.

    1:1 채팅방은 참여자 누구나, 그룹 채팅방은 manage-room 권한자만 삭제할 수 있습니다.

    Returns:
        삭제 직전의 참여자 ID 목록 (알림용)
    """
    room = await find_chat_room_by_id(db, room_id)
    if room is None:
        raise access_denied_error()

    action = RoomAction.READ_ROOM if room.is_direct_message else RoomAction.MANAGE_ROOM
    if not await can_access(db, actor_id, room_id, action):
        raise access_denied_error()

    participant_ids = await get_participant_ids(db, room_id)
    try:
        await _delete_room_rows(db, room_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Room {room_id} deleted by user {actor_id}")
    return participant_ids
