from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, ForeignKey, Index, UniqueConstraint
)
from app.database.mysql import Base, PreciseDateTime
from app.utils.time_utils import utcnow


class Message(Base):
    """
    채팅 메시지 (append-only)

    수정/삭제는 플래그로만 표시하고 행은 지우지 않는다.
    정렬 기준은 (created_at, id) - 둘 다 서버가 부여한다.
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_room_order", "room_id", "created_at", "id"),
        {"sqlite_autoincrement": True},  # id 재사용 금지 (단조 증가)
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(PreciseDateTime, default=utcnow, nullable=False)
    is_edited = Column(Boolean, default=False, nullable=False)
    edited_at = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    def edit_content(self, new_content: str, edited_at):
        self.content = new_content
        self.is_edited = True
        self.edited_at = edited_at

    def soft_delete(self, deleted_at):
        self.is_deleted = True
        self.deleted_at = deleted_at

    def __repr__(self):
        return f"<Message(id={self.id}, sender_id={self.sender_id}, room_id={self.room_id})>"


class MessageReaction(Base):
    """메시지 반응 - 사용자당 메시지 하나에 반응 하나 (변경 시 교체)"""
    __tablename__ = "message_reactions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_reactions_message_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(String(32), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<MessageReaction(message_id={self.message_id}, user_id={self.user_id}, kind={self.kind})>"
