"""
타이핑 표시 서비스

Redis sorted set에 채팅방별로 입력 중인 사용자를 TTL과 함께 저장합니다.
권한 확인은 호출자(chat_service)가 담당하며, Redis 오류는 기록만 하고 무시합니다.
"""

import time
from typing import List

from app.core.config import settings
from app.core.logging import get_logger
from app.database.redis import get_redis

logger = get_logger(__name__)

# Redis 키 패턴 (member = user_id, score = 만료 시각 epoch 초)
TYPING_ROOM_KEY = "typing:room:{room_id}"


class TypingService:
    """타이핑 표시 관리 서비스"""

    @staticmethod
    async def set_typing(room_id: int, user_id: int, is_typing: bool) -> bool:
        """
        사용자의 입력 중 상태 설정

        Args:
            room_id: 채팅방 ID
            user_id: 사용자 ID
            is_typing: True면 TTL 동안 입력 중으로 표시, False면 즉시 해제

        Returns:
            성공 여부
        """
        key = TYPING_ROOM_KEY.format(room_id=room_id)
        ttl = settings.typing_indicator_ttl
        try:
            redis = await get_redis()
            pipe = redis.pipeline()
            if is_typing:
                pipe.zadd(key, {str(user_id): time.time() + ttl})
                # 키 자체도 마지막 갱신 후 만료되도록
                pipe.expire(key, ttl * 2)
            else:
                pipe.zrem(key, str(user_id))
            await pipe.execute()
            return True
        except Exception as e:
            logger.warning(f"Failed to update typing state for user {user_id} in room {room_id}: {e}")
            return False

    @staticmethod
    async def get_typing_users(room_id: int) -> List[int]:
        """만료된 항목을 정리하고 현재 입력 중인 사용자 ID 목록 반환"""
        key = TYPING_ROOM_KEY.format(room_id=room_id)
        try:
            redis = await get_redis()
            now = time.time()
            await redis.zremrangebyscore(key, "-inf", now)
            members = await redis.zrangebyscore(key, now, "+inf")
            return sorted(int(member) for member in members)
        except Exception as e:
            logger.warning(f"Failed to read typing state for room {room_id}: {e}")
            return []

    @staticmethod
    async def clear_room(room_id: int):
        """채팅방 삭제 시 타이핑 상태 정리"""
        try:
            redis = await get_redis()
            await redis.delete(TYPING_ROOM_KEY.format(room_id=room_id))
        except Exception as e:
            logger.warning(f"Failed to clear typing state for room {room_id}: {e}")
