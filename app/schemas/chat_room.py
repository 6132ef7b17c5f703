from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class DirectRoomCreate(BaseModel):
    """1:1 대화 시작 스키마"""
    participant_id: int = Field(..., description="대화 상대 사용자 ID")


class GroupRoomCreate(BaseModel):
    """그룹 채팅방 생성 스키마"""
    name: str = Field(..., min_length=1, max_length=255, description="채팅방 이름")
    member_ids: List[int] = Field(default_factory=list, description="초대할 사용자 ID 목록 (생성자 제외)")


class LastMessage(BaseModel):
    id: int
    sender_id: int
    content: str
    created_at: Optional[str] = None


class ChatRoomResponse(BaseModel):
    """채팅방 응답 스키마 (보는 사람 기준)"""
    id: int = Field(..., description="채팅방 ID")
    name: Optional[str] = Field(None, description="그룹 채팅방 이름 (1:1은 저장하지 않음)")
    display_name: str = Field(..., description="보는 사람 기준 표시 이름")
    is_direct_message: bool = Field(..., description="1:1 채팅방 여부")
    created_by: int = Field(..., description="생성자 ID")
    participant_ids: List[int] = Field(default_factory=list, description="참여자 ID 목록")
    created_at: datetime = Field(..., description="생성일시")
    updated_at: datetime = Field(..., description="수정일시")
    last_message_at: Optional[datetime] = Field(None, description="마지막 메시지 시각")
    last_message: Optional[LastMessage] = Field(None, description="마지막 메시지")
    unread_count: int = Field(default=0, description="읽지 않은 메시지 수")


class ChatRoomList(BaseModel):
    """채팅방 목록 스키마"""
    rooms: List[ChatRoomResponse] = Field(..., description="채팅방 목록")
    total: int = Field(..., description="전체 채팅방 수")


class ConversationStartResponse(BaseModel):
    """1:1 대화 시작 결과"""
    room: ChatRoomResponse
    state: str = Field(..., description="최종 상태 (ready)")
    created: bool = Field(..., description="새로 생성되었는지 여부")
    history: List[str] = Field(..., description="상태 전이 기록")


class ReadReceiptResponse(BaseModel):
    room_id: int
    last_read_at: Optional[str] = None
    unread_count: int = 0
