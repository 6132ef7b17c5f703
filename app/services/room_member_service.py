"""
Room member (participant registry) service layer.

Tracks which users belong to which rooms. Every mutation is authorized by the
policy evaluator against the room; nothing here asks the registry itself for
permission.
"""

from datetime import datetime
from typing import Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError

from app.core.errors import BusinessLogicException, access_denied_error, user_not_found_error
from app.models.chat_rooms import ChatRoom
from app.models.room_members import RoomMember
from app.services.access_policy import RoomAction, can_access
from app.services.user_service import find_user_by_id
from app.utils.time_utils import utcnow


# =============================================================================
# Unguarded lookups (internal callers only)
# =============================================================================

async def get_participant_ids(db: AsyncSession, room_id: int) -> List[int]:
    """채팅방 참여자 ID 목록 (가입 순)"""
    result = await db.execute(
        select(RoomMember.user_id)
        .where(RoomMember.room_id == room_id)
        .order_by(RoomMember.created_at, RoomMember.id)
    )
    return list(result.scalars().all())


async def find_room_member(db: AsyncSession, room_id: int, user_id: int) -> Optional[RoomMember]:
    """채팅방 멤버십 조회"""
    result = await db.execute(
        select(RoomMember).where(
            RoomMember.room_id == room_id,
            RoomMember.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def is_participant(db: AsyncSession, room_id: int, user_id: int) -> bool:
    """사용자가 채팅방 참여자인지 확인"""
    return await find_room_member(db, room_id, user_id) is not None


def build_room_members(room_id: int, user_ids: Iterable[int], joined_at: datetime) -> List[RoomMember]:
    """채팅방 생성 시 함께 저장할 멤버 행 생성"""
    return [
        RoomMember(room_id=room_id, user_id=user_id, created_at=joined_at)
        for user_id in user_ids
    ]


async def _find_room(db: AsyncSession, room_id: int) -> Optional[ChatRoom]:
    result = await db.execute(select(ChatRoom).where(ChatRoom.id == room_id))
    return result.scalar_one_or_none()


# =============================================================================
# Guarded operations
# =============================================================================

async def list_participants(db: AsyncSession, actor_id: int, room_id: int) -> List[RoomMember]:
    """채팅방 참여자 목록 조회 (read-participants 권한 필요)"""
    if not await can_access(db, actor_id, room_id, RoomAction.READ_PARTICIPANTS):
        raise access_denied_error()

    result = await db.execute(
        select(RoomMember)
        .where(RoomMember.room_id == room_id)
        .order_by(RoomMember.created_at, RoomMember.id)
    )
    return list(result.scalars().all())


async def add_participant(db: AsyncSession, actor_id: int, room_id: int, user_id: int) -> RoomMember:
    """그룹 채팅방에 참여자 추가 (manage-room 권한 필요, 이미 참여 중이면 그대로 반환)"""
    if not await can_access(db, actor_id, room_id, RoomAction.MANAGE_ROOM):
        raise access_denied_error()

    room = await _find_room(db, room_id)
    if room is None:
        raise access_denied_error()
    if room.is_direct_message:
        raise BusinessLogicException("Direct message rooms always have exactly two participants")

    if await find_user_by_id(db, user_id) is None:
        raise user_not_found_error(user_id)

    existing = await find_room_member(db, room_id, user_id)
    if existing:
        return existing

    member = RoomMember(room_id=room_id, user_id=user_id, created_at=utcnow())
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        # 동시에 같은 사용자를 추가한 경우
        await db.rollback()
        member = await find_room_member(db, room_id, user_id)
    return member


async def remove_participant(db: AsyncSession, actor_id: int, room_id: int, user_id: int) -> None:
    """
    그룹 채팅방에서 참여자 제거

    - manage-room 권한이 있거나 본인이 나가는 경우만 허용
    - 1:1 채팅방은 참여자 제거 불가 (대화 전체 삭제를 사용)
    - 마지막 참여자가 나가도 채팅방과 기록은 유지
    """
    is_manager = await can_access(db, actor_id, room_id, RoomAction.MANAGE_ROOM)
    is_self_leave = actor_id == user_id and await can_access(db, actor_id, room_id, RoomAction.READ_ROOM)
    if not (is_manager or is_self_leave):
        raise access_denied_error()

    room = await _find_room(db, room_id)
    if room is None:
        raise access_denied_error()
    if room.is_direct_message:
        raise BusinessLogicException(
            "Participants cannot leave a direct message room; delete the conversation instead"
        )

    result = await db.execute(
        delete(RoomMember).where(
            RoomMember.room_id == room_id,
            RoomMember.user_id == user_id
        )
    )
    if result.rowcount == 0:
        await db.rollback()
        raise BusinessLogicException("User is not a participant of this room")
    await db.commit()


async def mark_room_read(db: AsyncSession, user_id: int, room_id: int) -> RoomMember:
    """채팅방을 읽음 처리 (last_read_at 갱신)"""
    if not await can_access(db, user_id, room_id, RoomAction.READ_MESSAGES):
        raise access_denied_error()

    member = await find_room_member(db, room_id, user_id)
    if member is None:
        raise access_denied_error()

    member.last_read_at = utcnow()
    await db.commit()
    return member
