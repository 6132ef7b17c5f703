from typing import Optional, Tuple
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from app.database.mysql import Base, PreciseDateTime
from app.utils.time_utils import utcnow


def make_direct_key(user_a: int, user_b: int) -> str:
    """순서와 무관한 1:1 채팅방 키 (작은 ID가 앞)"""
    return f"{min(user_a, user_b)}:{max(user_a, user_b)}"


def parse_direct_key(direct_key: Optional[str]) -> Optional[Tuple[int, int]]:
    if not direct_key:
        return None
    try:
        first, second = direct_key.split(":")
        return int(first), int(second)
    except ValueError:
        return None


class ChatRoom(Base):
    """
    채팅방 (1:1 + 그룹 공용)

    1:1 채팅방은 name을 저장하지 않는다. 표시 이름은 보는 사람 기준으로
    상대방 이름을 매번 계산한다.
    direct_key의 unique 제약이 한 쌍당 하나의 채팅방을 보장한다.
    """
    __tablename__ = "chat_rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    is_direct_message = Column(Boolean, default=False, nullable=False)
    direct_key = Column(String(64), unique=True, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    needs_cleanup = Column(Boolean, default=False, nullable=False)  # 격리된 불일치 채팅방
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_message_at = Column(PreciseDateTime, nullable=True)

    @property
    def direct_participant_ids(self) -> Optional[Tuple[int, int]]:
        return parse_direct_key(self.direct_key)

    def __repr__(self):
        return (
            f"<ChatRoom(id={self.id}, is_direct_message={self.is_direct_message}, "
            f"direct_key={self.direct_key})>"
        )
