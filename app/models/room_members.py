from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint
from app.database.mysql import Base, PreciseDateTime
from app.utils.time_utils import utcnow


class RoomMember(Base):
    """
    채팅방 참여자

    권한 판단과 실시간 전송 대상 결정의 기준 데이터
    """
    __tablename__ = "room_members"
    __table_args__ = (
        UniqueConstraint("room_id", "user_id", name="uq_room_members_room_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_read_at = Column(PreciseDateTime, nullable=True)

    def __repr__(self):
        return f"<RoomMember(id={self.id}, user_id={self.user_id}, room_id={self.room_id})>"
