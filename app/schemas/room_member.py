from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class ParticipantAdd(BaseModel):
    """참여자 추가 스키마"""
    user_id: int = Field(..., description="추가할 사용자 ID")


class ParticipantResponse(BaseModel):
    """참여자 응답 스키마"""
    user_id: int = Field(..., description="사용자 ID")
    username: Optional[str] = Field(None, description="사용자명")
    display_name: str = Field(..., description="표시 이름")
    joined_at: datetime = Field(..., description="참여일시")
    last_read_at: Optional[datetime] = Field(None, description="마지막으로 읽은 시각")


class ParticipantList(BaseModel):
    participants: List[ParticipantResponse]
    total: int
