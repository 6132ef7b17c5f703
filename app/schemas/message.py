from typing import Optional, List, Dict
from pydantic import BaseModel, Field


class MessageCreate(BaseModel):
    """메시지 전송 스키마"""
    content: str = Field(..., min_length=1, description="메시지 내용")


class MessageUpdate(BaseModel):
    """메시지 수정 스키마"""
    content: str = Field(..., min_length=1, description="수정된 메시지 내용")


class MessageResponse(BaseModel):
    """메시지 응답 스키마 (삭제된 메시지는 내용이 가려짐)"""
    id: int = Field(..., description="메시지 ID")
    room_id: int = Field(..., description="채팅방 ID")
    sender_id: int = Field(..., description="보낸 사용자 ID")
    content: str = Field(..., description="메시지 내용")
    created_at: str = Field(..., description="서버 기준 생성 시각 (ISO 8601)")
    is_edited: bool = Field(default=False, description="수정 여부")
    edited_at: Optional[str] = Field(None, description="수정일시")
    is_deleted: bool = Field(default=False, description="삭제 여부")
    reactions: Dict[str, int] = Field(default_factory=dict, description="반응 종류별 개수")


class MessagePageResponse(BaseModel):
    """커서 기반 메시지 목록"""
    items: List[MessageResponse] = Field(..., description="메시지 목록")
    next_cursor: Optional[str] = Field(None, description="다음 페이지 커서 (없으면 마지막 페이지)")
    direction: str = Field(..., description="forward (오래된 순) 또는 backward (최신 순)")


class ReactionRequest(BaseModel):
    """반응 추가/교체 스키마"""
    kind: str = Field(..., min_length=1, max_length=32, description="반응 종류 (예: 👍)")


class TypingRequest(BaseModel):
    is_typing: bool = Field(default=True, description="입력 중 여부")


class TypingResponse(BaseModel):
    room_id: int
    typing_users: List[int] = Field(default_factory=list)
