"""
Authorization policy evaluator for chat rooms.

Access is decided in two layers so that no check depends on itself:

1. Room layer: the room row is loaded by id. A missing or quarantined room
   denies everything.
2. Membership leaf: a single lookup against ``room_members`` keyed by
   (room_id, user_id). It never goes through the participant registry and
   never calls :func:`can_access` again, so "may X read the participants of
   R" does not require "may X read the participants of R" to already hold.

``manage-room`` is resolved from the room's creator and the user's role, not
from membership.

The evaluator is a pure decision function. It never raises; any missing or
ambiguous data is a denial, and the reason goes to the diagnostics log.
"""

import enum
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import log_authorization_denial
from app.models.chat_rooms import ChatRoom
from app.models.room_members import RoomMember
from app.models.users import User

logger = logging.getLogger(__name__)


class RoomAction(str, enum.Enum):
    READ_ROOM = "read-room"
    READ_PARTICIPANTS = "read-participants"
    SEND_MESSAGE = "send-message"
    READ_MESSAGES = "read-messages"
    REACT = "react"
    MANAGE_ROOM = "manage-room"


async def _load_room(db: AsyncSession, room_id: int) -> Optional[ChatRoom]:
    result = await db.execute(select(ChatRoom).where(ChatRoom.id == room_id))
    return result.scalar_one_or_none()


async def _membership_leaf(db: AsyncSession, room: ChatRoom, user_id: int) -> bool:
    result = await db.execute(
        select(RoomMember.id).where(
            RoomMember.room_id == room.id,
            RoomMember.user_id == user_id
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _is_admin(db: AsyncSession, user_id: int) -> bool:
    result = await db.execute(select(User.role).where(User.id == user_id))
    return result.scalar_one_or_none() == "admin"


async def _evaluate(db: AsyncSession, user_id: int, room_id: int, action: RoomAction) -> Optional[str]:
    """Returns None when allowed, otherwise the denial reason."""
    room = await _load_room(db, room_id)
    if room is None:
        return "room_not_found"
    if room.needs_cleanup:
        return "room_quarantined"

    if action == RoomAction.MANAGE_ROOM:
        if room.created_by == user_id or await _is_admin(db, user_id):
            return None
        return "not_room_manager"

    if await _membership_leaf(db, room, user_id):
        return None
    return "not_a_participant"


async def can_access(db: AsyncSession, user_id: Optional[int], room_id: Optional[int], action) -> bool:
    """
    사용자가 채팅방에 대해 action을 수행할 수 있는지 판단합니다.

    Args:
        db: 데이터베이스 세션 (읽기만 수행)
        user_id: 인증된 사용자 ID
        room_id: 채팅방 ID
        action: RoomAction 또는 그 문자열 값

    Returns:
        bool: 허용이면 True. 판단할 수 없는 모든 경우는 False
    """
    try:
        action = RoomAction(action)
    except ValueError:
        log_authorization_denial(user_id, room_id, str(action), "unknown_action")
        return False

    if user_id is None or room_id is None:
        log_authorization_denial(user_id, room_id, action.value, "missing_identity")
        return False

    try:
        reason = await _evaluate(db, int(user_id), int(room_id), action)
    except Exception as e:
        logger.error(f"Policy evaluation failed for user {user_id} room {room_id}: {e}")
        reason = "evaluation_error"

    if reason is not None:
        log_authorization_denial(user_id, room_id, action.value, reason)
        return False
    return True
